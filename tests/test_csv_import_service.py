from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from coatcheck.models import Customer, Job, Service
from coatcheck.services.csv_import_service import (
    clean_phone,
    import_job_rows,
    import_service_rows,
    map_coating_type,
    map_status,
    parse_date,
    parse_price,
    read_csv_rows,
)
from tests.support import DatabaseTestCase


class CsvMappingTests(unittest.TestCase):
    def test_coating_type(self) -> None:
        self.assertEqual(map_coating_type('Ceramic, Powder'), 'both')
        self.assertEqual(map_coating_type('MCX black'), 'ceramic')
        self.assertEqual(map_coating_type('chrome'), 'ceramic')
        self.assertEqual(map_coating_type('Powder'), 'powder')
        self.assertEqual(map_coating_type('sandblast only'), 'powder')
        self.assertEqual(map_coating_type('something else'), 'ceramic')
        self.assertEqual(map_coating_type(''), 'ceramic')

    def test_status(self) -> None:
        self.assertEqual(map_status('Paid'), 'completed')
        self.assertEqual(map_status('ready for pickup'), 'completed')
        self.assertEqual(map_status(' Prepped '), 'in-progress')
        self.assertEqual(map_status('Material Ordered/Job On Hold'), 'in-progress')
        self.assertEqual(map_status('Canceled'), 'cancelled')
        self.assertEqual(map_status('waiting'), 'pending')
        self.assertEqual(map_status(None), 'pending')

    def test_price(self) -> None:
        self.assertEqual(parse_price('$1,200.50'), Decimal('1200.50'))
        self.assertEqual(parse_price(' $ 80 '), Decimal('80.00'))
        self.assertEqual(parse_price('call'), Decimal('0.00'))
        self.assertEqual(parse_price(''), Decimal('0.00'))

    def test_phone(self) -> None:
        self.assertEqual(clean_phone('(555) 123-4567'), '555-123-4567')
        self.assertEqual(clean_phone('1 555 123 4567'), '15551234567')
        self.assertEqual(clean_phone(None), '')

    def test_date(self) -> None:
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(parse_date('03/05/2024', now=now), datetime(2024, 3, 5, tzinfo=timezone.utc))
        self.assertEqual(parse_date('March 5, 2024', now=now), datetime(2024, 3, 5, tzinfo=timezone.utc))
        self.assertEqual(parse_date('2024-03-05', now=now), datetime(2024, 3, 5, tzinfo=timezone.utc))
        self.assertEqual(parse_date('soon', now=now), now)


class CsvImportTests(DatabaseTestCase):
    def test_imports_rows_and_skips_header_echoes(self) -> None:
        rows = [
            {'Customer': 'Customer Name', 'Items': 'x', 'Price': '1'},
            {'Customer': '', 'Items': 'wheels', 'Price': '$10'},
            {'Customer': 'Carl', 'Items': '', 'Price': ''},
            {
                'Customer': 'Bob',
                'Coating Type': 'CERAMIC/MCX',
                'Contact': '5551234567',
                'Items': 'Headers',
                'Price': '$120.50',
                'Received': '01/15/2024',
                'Status': 'Paid',
            },
        ]

        summary = import_job_rows(self.db, rows)

        self.assertEqual(summary.imported, 1)
        self.assertEqual(summary.skipped, 3)
        job = self.db.execute(select(Job)).scalar_one()
        self.assertEqual(job.tracking_id, 'JOB-0001')
        self.assertEqual(job.coating_type, 'ceramic')
        self.assertEqual(job.status, 'completed')
        self.assertEqual(job.price, Decimal('120.50'))
        self.assertEqual(job.phone_number, '555-123-4567')
        customer = self.db.execute(select(Customer)).scalar_one()
        self.assertEqual(customer.name, 'Bob')
        self.assertEqual(job.customer_id, customer.id)

    def test_reuses_customer_and_falls_back_to_placeholder_phone(self) -> None:
        self.db.add(Customer(name='Dana'))
        self.db.commit()

        summary = import_job_rows(self.db, [{'Customer': 'dana', 'Items': 'Rims', 'Price': '200'}])

        self.assertEqual(summary.imported, 1)
        self.assertEqual(len(self.db.execute(select(Customer)).scalars().all()), 1)
        job = self.db.execute(select(Job)).scalar_one()
        self.assertEqual(job.phone_number, '555-0000')
        self.assertEqual(job.status, 'pending')

    def test_tracking_ids_continue_after_existing_jobs(self) -> None:
        self.db.add(Job(tracking_id='JOB-0041', coating_type='powder', status='received'))
        self.db.commit()

        summary = import_job_rows(self.db, [{'Customer': 'Eve', 'Items': 'Bumper', 'Price': '90'}])

        self.assertEqual(summary.tracking_ids, ['JOB-0042'])

    def test_service_price_list(self) -> None:
        self.add_service('svc-1', 'Wheel 17in', '80.00')
        rows = [
            {'Item Description': 'Wheel 18in', 'Price ($)': '95'},
            {'Item Description': 'wheel 17in', 'Price ($)': '85'},
            {'Item Description': '', 'Price ($)': '10'},
            {'Item Description': 'Caliper', 'Price ($)': 'n/a'},
        ]

        summary = import_service_rows(self.db, rows)

        self.assertEqual(summary.imported, 1)
        self.assertEqual(summary.skipped, 3)
        service = self.db.execute(select(Service).where(Service.name == 'Wheel 18in')).scalar_one()
        self.assertEqual(service.category, 'powder')
        self.assertEqual(service.price, Decimal('95.00'))


class ReadCsvTests(unittest.TestCase):
    def test_strips_bom_and_blank_rows(self) -> None:
        handle = tempfile.NamedTemporaryFile('w', suffix='.csv', delete=False, encoding='utf-8-sig', newline='')
        with handle:
            handle.write('Customer,Items,Price\r\n Bob ,Headers,$10\r\n,,\r\n')
        self.addCleanup(os.unlink, handle.name)

        rows = read_csv_rows(handle.name)

        self.assertEqual(rows, [{'Customer': 'Bob', 'Items': 'Headers', 'Price': '$10'}])


if __name__ == '__main__':
    unittest.main()
