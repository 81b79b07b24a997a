#!/usr/bin/env python3
"""Вывести формы и способы доставки из базы (или встроенный каталог)."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from database import db  # noqa: E402
from pricing.catalog import BUNDLED_CATALOG, Catalog, load_catalog  # noqa: E402
from pricing.money import format_currency  # noqa: E402


def print_catalog(catalog: Catalog) -> None:
    print("Формы:")
    for shape in catalog.shapes.values():
        print(f"  - {shape.name} [{shape.id}]: {format_currency(shape.base_price)}")

    print("\nСпособы доставки:")
    for method in catalog.methods.values():
        marker = " (нужен адрес)" if method.requires_address else ""
        print(f"\n  {method.label} [{method.id}]{marker}")
        for speed in method.speed_options.values():
            default = " *" if speed.id == method.default_speed else ""
            print(f"    - {speed.label}{default}: {format_currency(speed.fee)}, {speed.days} дн.")


async def load(bundled: bool) -> Catalog:
    if bundled:
        return BUNDLED_CATALOG
    await db.init_db()
    return await load_catalog(db.fetch_shapes, db.fetch_fulfillment_config)


def main() -> None:
    parser = argparse.ArgumentParser(description="Вывести каталог витрины")
    parser.add_argument(
        "--bundled",
        action="store_true",
        help="Показать встроенный каталог, не обращаясь к базе",
    )
    args = parser.parse_args()

    load_dotenv(os.path.join(ROOT_DIR, ".env"))
    print_catalog(asyncio.run(load(args.bundled)))


if __name__ == "__main__":
    main()
