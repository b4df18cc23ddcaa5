"""Import legacy meter readings from a CSV export into the lots collection.

Usage:
  export MONGODB_URL="mongodb://localhost:27017"
  python scripts/import_lots.py leituras.csv --year 2025

The CSV needs the columns periodo, lote, anterior, atual, consumo (',' or ';'
separated). Each lot found in the file is written whole, replacing what the
lot held before. Use --dry-run to only print what would be written.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Iterable, List, Mapping

import pandas as pd
from motor.motor_asyncio import AsyncIOMotorClient

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.database import _get_db_name_from_uri
from app.core.errors import InvalidLotKey
from app.models.reading import ReadingRecord
from app.services.ledger import derive_amounts, format_period, mint_record_id, validate_lot_key
from app.services.lot_store import LotStore

logger = logging.getLogger("import_lots")

MONTHS = [
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
]


def period_labels(year: int) -> Dict[str, str]:
    """'Janeiro / Fevereiro' -> '2025-01': a reading cycle is named by the two months it spans."""
    labels = {}
    for i, name in enumerate(MONTHS):
        following = MONTHS[(i + 1) % 12]
        labels[f"{name} / {following}"] = format_period(year, i + 1)
    return labels


def label_to_period(label: str, year: int) -> str:
    normalized = " / ".join(part.strip() for part in str(label).split("/"))
    period = period_labels(year).get(normalized)
    if period is None:
        logger.warning(f"Unknown period label '{label}', filing it under January")
        return format_period(year, 1)
    return period


def _number(value) -> float | None:
    try:
        number = float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError):
        return None
    if number != number or number < 0:  # NaN or negative
        return None
    return number


def build_lots(rows: Iterable[Mapping[str, object]], year: int) -> Dict[str, List[ReadingRecord]]:
    lots: Dict[str, List[ReadingRecord]] = {}
    for row in rows:
        try:
            lot_key = validate_lot_key(row.get("lote"))
        except InvalidLotKey:
            continue

        previous_reading = _number(row.get("anterior"))
        current_reading = _number(row.get("atual"))
        if previous_reading is None or current_reading is None:
            logger.warning(f"Lot {lot_key}: skipping row without readings")
            continue
        if current_reading < previous_reading:
            logger.warning(f"Lot {lot_key}: skipping row, current {current_reading} < previous {previous_reading}")
            continue

        period = label_to_period(row.get("periodo", ""), year)
        records = lots.setdefault(lot_key, [])
        if any(r.period == period for r in records):
            logger.warning(f"Lot {lot_key}: duplicate period {period}, keeping the first row")
            continue

        tariff = 0.0
        consumption, cost = derive_amounts(previous_reading, current_reading, tariff)
        listed = _number(row.get("consumo"))
        if listed is not None and abs(listed - consumption) > 1e-9:
            logger.warning(f"Lot {lot_key} {period}: CSV consumption {listed} replaced by {consumption}")

        records.append(
            ReadingRecord(
                id=mint_record_id(),
                period=period,
                previous_reading=previous_reading,
                current_reading=current_reading,
                consumption=consumption,
                tariff=tariff,
                cost=cost,
            )
        )
    return lots


def read_rows(path: str) -> List[Dict[str, object]]:
    df = pd.read_csv(path, sep=None, engine="python", dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df.to_dict(orient="records")


async def import_lots(path: str, year: int, dry_run: bool = False) -> int:
    lots = build_lots(read_rows(path), year)

    if dry_run:
        for lot_key, records in lots.items():
            print(f"Lot {lot_key}: {len(records)} records ({', '.join(r.period for r in records)})")
        return len(lots)

    uri = settings.get_mongo_uri()
    client = AsyncIOMotorClient(uri)
    try:
        store = LotStore(client[_get_db_name_from_uri(uri)])
        for lot_key, records in lots.items():
            await store.put_lot_records(lot_key, records)
            print(f"Lot {lot_key} imported with {len(records)} records.")
    finally:
        client.close()

    print("Import finished!")
    return len(lots)


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("csv_path")
    parser.add_argument("--year", type=int, default=2025)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(import_lots(args.csv_path, args.year, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
