"""
Call-Center CRM - Import d'un tableur de points de service en ligne de commande.
Affiche le plan des localités manquantes; n'écrit rien sans --confirm.
Run: cd backend && python3 scripts/import_service_points.py points.xlsx [--confirm]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, db
from models.imports import ImportRunState
from services.import_reconciler import ImportReconciler
from services.import_runs import ImportRunStore
from services.spreadsheet_reader import UnsupportedSpreadsheet, read_matrix


async def run(path: Path, confirm: bool):
    try:
        matrix = read_matrix(path.name, path.read_bytes())
    except UnsupportedSpreadsheet as e:
        print(f"❌ {e}")
        return 1

    reconciler = ImportReconciler(user="cli")
    parsed = await reconciler.run_parse(matrix)
    print(f"Lignes: {parsed.total} | valides: {parsed.valid} | invalides: {parsed.invalid}")

    for entry in parsed.missing_plan.values():
        flag = " (nouveau gouvernorat)" if entry.governorate_missing else ""
        print(f"  {entry.original_name}{flag}: {', '.join(entry.missing_districts.values())}")

    if not confirm:
        print("Aucune écriture (relancer avec --confirm)")
        return 0

    runs = ImportRunStore(db)
    run_doc = await runs.create(parsed, source=path.name, user="cli")
    await runs.transition(run_doc["id"], ImportRunState.RECONCILING)

    result = await reconciler.confirm(parsed.missing_plan, parsed.rows, run_id=run_doc["id"])
    await runs.transition(run_doc["id"], result.status, result={**result.dict(), "status": result.status.value})

    print(f"{result.outcome}: {result.inserted_count} écrits, {result.failed_count} en échec")
    print(f"Localités créées: {result.created_governorates} gouvernorat(s), {result.created_districts} district(s)")
    return 0 if result.failed_chunks == 0 else 2


def main():
    parser = argparse.ArgumentParser(description="Import des points de service")
    parser.add_argument("file", type=Path)
    parser.add_argument("--confirm", action="store_true", help="créer les localités et écrire les points")
    args = parser.parse_args()

    try:
        code = asyncio.run(run(args.file, args.confirm))
    finally:
        client.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
