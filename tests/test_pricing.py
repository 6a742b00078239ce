from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from coatcheck.services.pricing import (
    check_status_transition,
    classify_job_age,
    format_service_lines,
    infer_coating_type,
    job_age_days,
    partition_jobs,
    resolve_price,
    service_total,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class ServiceTotalTests(unittest.TestCase):
    def test_sums_price_times_quantity(self) -> None:
        lines = [
            SimpleNamespace(service_price=Decimal('50.00'), quantity=2),
            SimpleNamespace(service_price=Decimal('19.99'), quantity=1),
        ]
        self.assertEqual(service_total(lines), Decimal('119.99'))

    def test_empty_is_zero(self) -> None:
        self.assertEqual(service_total([]), Decimal('0.00'))


class ResolvePriceTests(unittest.TestCase):
    def test_explicit_price_wins_over_services(self) -> None:
        price = resolve_price(
            explicit_price=Decimal('75'),
            services_changed=True,
            current_price=Decimal('10.00'),
            services_total=Decimal('50.00'),
        )
        self.assertEqual(price, Decimal('75.00'))

    def test_changed_services_recompute(self) -> None:
        price = resolve_price(
            explicit_price=None,
            services_changed=True,
            current_price=Decimal('10.00'),
            services_total=Decimal('50.00'),
        )
        self.assertEqual(price, Decimal('50.00'))

    def test_unchanged_services_keep_current_price(self) -> None:
        price = resolve_price(
            explicit_price=None,
            services_changed=False,
            current_price=Decimal('10.00'),
            services_total=Decimal('50.00'),
        )
        self.assertEqual(price, Decimal('10.00'))

    def test_new_job_without_services_is_zero(self) -> None:
        price = resolve_price(explicit_price=None, services_changed=False, current_price=None, services_total=Decimal('0'))
        self.assertEqual(price, Decimal('0.00'))


class JobAgeTests(unittest.TestCase):
    def test_rounds_partial_days_up(self) -> None:
        self.assertEqual(job_age_days(NOW - timedelta(days=2, hours=1), NOW), 3)
        self.assertEqual(job_age_days(NOW - timedelta(days=3), NOW), 3)

    def test_future_dates_use_absolute_difference(self) -> None:
        self.assertEqual(job_age_days(NOW + timedelta(hours=30), NOW), 2)

    def test_naive_received_date_is_utc(self) -> None:
        self.assertEqual(job_age_days(datetime(2024, 6, 10, 12, 0), NOW), 5)

    def test_buckets(self) -> None:
        cases = [
            (0, 'New', 'new'),
            (3, 'New', 'new'),
            (4, '4d', 'warning'),
            (7, '7d', 'warning'),
            (8, '8d', 'elevated'),
            (14, '14d', 'elevated'),
            (15, '15d!', 'urgent'),
        ]
        for days, label, bucket in cases:
            with self.subTest(days=days):
                age = classify_job_age(days)
                self.assertEqual(age.label, label)
                self.assertEqual(age.bucket, bucket)


class PartitionJobsTests(unittest.TestCase):
    def test_active_oldest_first_completed_newest_first(self) -> None:
        jobs = [
            SimpleNamespace(id='a', status='received', received_date=NOW - timedelta(days=1)),
            SimpleNamespace(id='b', status='paid', received_date=NOW - timedelta(days=9)),
            SimpleNamespace(id='c', status='coated', received_date=NOW - timedelta(days=5)),
            SimpleNamespace(id='d', status='finished', received_date=NOW - timedelta(days=2)),
            SimpleNamespace(id='e', status='cancelled', received_date=NOW - timedelta(days=3)),
        ]

        active, completed = partition_jobs(jobs)

        self.assertEqual([job.id for job in active], ['c', 'e', 'a'])
        self.assertEqual([job.id for job in completed], ['d', 'b'])


class StatusTransitionTests(unittest.TestCase):
    def test_forward_moves_and_skips_are_allowed(self) -> None:
        check_status_transition('received', 'prepped')
        check_status_transition('received', 'finished')
        check_status_transition('finished', 'paid')

    def test_backward_moves_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            check_status_transition('coated', 'received')

    def test_terminal_states_are_final(self) -> None:
        with self.assertRaises(ValueError):
            check_status_transition('paid', 'cancelled')
        with self.assertRaises(ValueError):
            check_status_transition('cancelled', 'received')

    def test_cancel_from_open_state(self) -> None:
        check_status_transition('prepped', 'cancelled')

    def test_same_status_is_a_no_op(self) -> None:
        check_status_transition('paid', 'paid')

    def test_imported_statuses_can_enter_workflow(self) -> None:
        check_status_transition('completed', 'paid')
        check_status_transition('pending', 'received')


class CoatingInferenceTests(unittest.TestCase):
    def test_inference(self) -> None:
        self.assertEqual(infer_coating_type(['Ceramic Exhaust', 'Powder Wheels']), 'misc')
        self.assertEqual(infer_coating_type(['CERAMIC header']), 'ceramic')
        self.assertEqual(infer_coating_type(['Powder wheel']), 'powder')
        self.assertEqual(infer_coating_type(['Sandblast']), 'powder')
        self.assertEqual(infer_coating_type([]), 'powder')


class ServiceLinesTests(unittest.TestCase):
    def test_one_line_per_service(self) -> None:
        lines = [
            SimpleNamespace(service_name='Wheel', service_price=Decimal('40.00'), quantity=4),
            SimpleNamespace(service_name='Caliper', service_price=Decimal('25.50'), quantity=1),
        ]
        self.assertEqual(format_service_lines(lines), 'Wheel x4 - $160.00\nCaliper - $25.50')


if __name__ == '__main__':
    unittest.main()
