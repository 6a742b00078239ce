import argparse
import logging

from coatcheck.db import SessionLocal
from coatcheck.services.csv_import_service import import_service_rows, read_csv_rows


def main() -> None:
    parser = argparse.ArgumentParser(description='Import the powder coating price list into the service catalog.')
    parser.add_argument('path', help='CSV file with "Item Description" and "Price ($)" columns.')
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    rows = read_csv_rows(args.path)
    with SessionLocal() as db:
        summary = import_service_rows(db, rows)
    print(f'Service import complete: imported={summary.imported}, skipped={summary.skipped}')


if __name__ == '__main__':
    main()
