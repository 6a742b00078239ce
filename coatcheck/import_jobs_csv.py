import argparse
import logging

from coatcheck.db import SessionLocal
from coatcheck.services.csv_import_service import import_job_rows, read_csv_rows


def main() -> None:
    parser = argparse.ArgumentParser(description='Import jobs from a spreadsheet CSV export.')
    parser.add_argument('path', help='CSV file with Customer, Coating Type, Contact, Items, Price, Received and Status columns.')
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    rows = read_csv_rows(args.path)
    print(f'Found {len(rows)} records')
    with SessionLocal() as db:
        summary = import_job_rows(db, rows)
    print(f'Job import complete: imported={summary.imported}, skipped={summary.skipped}')


if __name__ == '__main__':
    main()
