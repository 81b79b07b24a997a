#!/usr/bin/env python3
"""
Проверки приложения «от и до»: health, каталог, расчёт цены, промокод, загрузка.
Запускать при поднятом приложении (локально или на сервере).
Использование:
  python scripts/run_app_tests.py                    # тест http://localhost:8000
  BASE_URL=https://shop.example.com python scripts/run_app_tests.py
"""

from __future__ import annotations

import os
import sys

import httpx

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")
TIMEOUT = 15.0

SAMPLE_ORDER = {
    "nailSets": [{"shapeId": "almond", "quantity": 2, "description": "French tips"}],
    "fulfillment": {"method": "pickup", "speed": "standard"},
}


def ok(name: str, status: int, detail: str = ""):
    print(f"  ✅ {name}: HTTP {status}" + (f" ({detail})" if detail else ""))


def fail(name: str, msg: str):
    print(f"  ❌ {name}: {msg}")
    return False


def test_health():
    """Проверка /health."""
    print("\n1. Health-check")
    try:
        r = httpx.get(f"{BASE_URL}/health", timeout=TIMEOUT)
        if r.status_code == 200 and r.json().get("status") == "ok":
            ok("GET /health", r.status_code)
            return True
        return fail("GET /health", f"status={r.status_code} body={r.text[:200]}")
    except httpx.HTTPError as e:
        return fail("GET /health", str(e))


def test_catalog():
    """Проверка /api/catalog."""
    print("\n2. Каталог")
    try:
        r = httpx.get(f"{BASE_URL}/api/catalog", timeout=TIMEOUT)
        if r.status_code != 200:
            return fail("GET /api/catalog", f"status={r.status_code} body={r.text[:200]}")
        data = r.json()
        shapes = data.get("shapes") or []
        methods = data.get("deliveryMethods") or {}
        if not shapes or not methods:
            return fail("GET /api/catalog", "пустой каталог")
        ok("GET /api/catalog", r.status_code, f"форм: {len(shapes)}, способов доставки: {len(methods)}")
        return True
    except httpx.HTTPError as e:
        return fail("GET /api/catalog", str(e))


def test_quote():
    """Расчёт цены для двух наборов almond с самовывозом."""
    print("\n3. Расчёт цены")
    try:
        r = httpx.post(f"{BASE_URL}/api/pricing/quote", json=SAMPLE_ORDER, timeout=TIMEOUT)
        if r.status_code != 200:
            return fail("POST /api/pricing/quote", f"status={r.status_code} body={r.text[:200]}")
        data = r.json()
        if data.get("total") is None or not data.get("lineItems"):
            return fail("POST /api/pricing/quote", f"неожиданный ответ: {data}")
        ok("POST /api/pricing/quote", r.status_code, f"итого: {data['total']}")
        return True
    except httpx.HTTPError as e:
        return fail("POST /api/pricing/quote", str(e))


def test_promo():
    """Несуществующий промокод должен вернуть valid=false, а не ошибку."""
    print("\n4. Проверка промокода")
    try:
        payload = {**SAMPLE_ORDER, "code": "NO-SUCH-CODE"}
        r = httpx.post(f"{BASE_URL}/api/promo/validate", json=payload, timeout=TIMEOUT)
        if r.status_code != 200:
            return fail("POST /api/promo/validate", f"status={r.status_code}")
        data = r.json()
        if data.get("valid") is not False:
            return fail("POST /api/promo/validate", f"неожиданный ответ: {data}")
        ok("POST /api/promo/validate", r.status_code, data.get("error", ""))
        return True
    except httpx.HTTPError as e:
        return fail("POST /api/promo/validate", str(e))


def test_capacity():
    print("\n5. Загрузка недели")
    try:
        r = httpx.get(f"{BASE_URL}/api/capacity", timeout=TIMEOUT)
        if r.status_code != 200:
            return fail("GET /api/capacity", f"status={r.status_code}")
        data = r.json()
        ok("GET /api/capacity", r.status_code, f"осталось мест: {data.get('remaining')}")
        return True
    except httpx.HTTPError as e:
        return fail("GET /api/capacity", str(e))


def main():
    print(f"BASE_URL = {BASE_URL}")
    results = [test_health(), test_catalog(), test_quote(), test_promo(), test_capacity()]
    all_ok = all(results)
    print("\n" + ("✅ Все проверки пройдены." if all_ok else "❌ Часть проверок не пройдена."))
    sys.exit(0 if all_ok else 1)


if __name__ == "__main__":
    main()
