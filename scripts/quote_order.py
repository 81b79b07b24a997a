#!/usr/bin/env python3
"""Посчитать стоимость заказа из командной строки."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from database import db  # noqa: E402
from orders.promos import resolve_promo_code  # noqa: E402
from pricing.catalog import BUNDLED_CATALOG, load_catalog  # noqa: E402
from pricing.engine import calculate_price_breakdown  # noqa: E402
from pricing.money import format_currency  # noqa: E402


def parse_set(value: str) -> dict:
    """shape[:quantity[:name]] -> словарь набора."""
    parts = value.split(":", 2)
    nail_set = {"shapeId": parts[0]}
    if len(parts) > 1:
        nail_set["quantity"] = parts[1]
    if len(parts) > 2:
        nail_set["name"] = parts[2]
    return nail_set


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Посчитать разбивку стоимости заказа.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-s",
        "--set",
        dest="sets",
        action="append",
        default=[],
        help="Набор в виде shape[:quantity[:name]], можно повторять",
    )
    parser.add_argument("-m", "--method", default="pickup", help="Способ получения")
    parser.add_argument("--speed", default=None, help="Скорость (по умолчанию скорость способа)")
    parser.add_argument("-p", "--promo", default=None, help="Промокод (ищется в базе)")
    parser.add_argument("--bundled", action="store_true", help="Считать по встроенному каталогу без базы")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    if args.bundled:
        catalog, rules = BUNDLED_CATALOG, None
    else:
        await db.init_db()
        catalog = await load_catalog(db.fetch_shapes, db.fetch_fulfillment_config)
        rule = await resolve_promo_code(args.promo)
        rules = [rule] if rule else None

    breakdown = calculate_price_breakdown(
        [parse_set(value) for value in args.sets],
        {"method": args.method, "speed": args.speed},
        args.promo,
        catalog=catalog,
        promotions=rules,
    )

    for item in breakdown.line_items:
        print(f"{item.label:<40} {format_currency(item.amount):>10}")
    print("-" * 51)
    print(f"{'Total':<40} {format_currency(breakdown.total):>10}")
    print(f"Estimated completion: {breakdown.estimated_completion_days} day(s)")
    for warning in breakdown.warnings:
        print(f"⚠️  {warning.message}", file=sys.stderr)
    return 1 if breakdown.warnings else 0


def main() -> None:
    load_dotenv()
    args = parse_args()
    if not args.sets:
        print("Нужен хотя бы один набор: --set almond:2", file=sys.stderr)
        raise SystemExit(2)
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
