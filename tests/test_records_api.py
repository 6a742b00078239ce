from __future__ import annotations

from coatcheck.models import InventoryItem
from tests.support import ApiTestCase


class CustomerApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sign_in_as('manager')

    def test_create_and_update_customer(self) -> None:
        created = self.client.post('/api/customers', json={'name': '  Dana  ', 'email': 'dana@example.com'})
        self.assertEqual(created.status_code, 201)
        customer = created.json()
        self.assertEqual(customer['name'], 'Dana')

        updated = self.client.patch(f"/api/customers/{customer['id']}", json={'phone': '555-222-3333'}).json()

        self.assertEqual(updated['phone'], '555-222-3333')
        self.assertEqual(updated['email'], 'dana@example.com')

    def test_invalid_email_is_rejected(self) -> None:
        response = self.client.post('/api/customers', json={'name': 'Dana', 'email': 'not-an-email'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errors'][0]['field'], 'email')

    def test_missing_customer(self) -> None:
        self.assertEqual(self.client.get('/api/customers/nope').status_code, 404)


class NoteApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sign_in_as('admin')
        self.job = self.client.post('/api/jobs', json={'customerName': 'Eve'}).json()

    def test_job_note_is_filed_under_customer_and_author(self) -> None:
        response = self.client.post('/api/notes', json={'jobId': self.job['id'], 'content': 'Picked blue'})

        self.assertEqual(response.status_code, 201)
        note = response.json()
        self.assertEqual(note['customerId'], self.job['customerId'])
        self.assertEqual(note['author'], 'Admin Tester')

        by_customer = self.client.get('/api/notes', params={'customerId': self.job['customerId']}).json()
        self.assertEqual([item['id'] for item in by_customer], [note['id']])

    def test_note_for_missing_job(self) -> None:
        response = self.client.post('/api/notes', json={'jobId': 'missing', 'content': 'hello'})

        self.assertEqual(response.status_code, 404)

    def test_delete_note(self) -> None:
        note = self.client.post('/api/notes', json={'jobId': self.job['id'], 'content': 'temp'}).json()

        self.assertEqual(self.client.delete(f"/api/notes/{note['id']}").status_code, 204)
        self.assertEqual(self.client.get('/api/notes', params={'jobId': self.job['id']}).json(), [])


class InventoryApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sign_in_as('manager')

    def test_create_item_defaults(self) -> None:
        response = self.client.post('/api/inventory', json={'name': 'Masking tape', 'quantity': '12'})

        self.assertEqual(response.status_code, 201)
        item = response.json()
        self.assertEqual(item['category'], 'office_supplies')
        self.assertEqual(item['unit'], 'pieces')
        self.assertEqual(item['quantity'], '12')
        self.assertEqual(item['price'], '0.00')

    def test_negative_stock_is_rejected(self) -> None:
        response = self.client.post('/api/inventory', json={'name': 'Tape', 'quantity': '-1'})

        self.assertEqual(response.status_code, 400)

    def test_deleting_item_keeps_job_usage_name(self) -> None:
        item = self.client.post(
            '/api/inventory', json={'name': 'Gloss Black', 'category': 'powder', 'quantity': '5', 'unit': 'lbs'}
        ).json()
        job = self.client.post(
            '/api/jobs',
            json={'customerName': 'Ivy', 'inventoryItems': [{'inventoryItemId': item['id'], 'quantity': '1'}]},
        ).json()

        self.assertEqual(self.client.delete(f"/api/inventory/{item['id']}").status_code, 204)

        usage = self.client.get(f"/api/jobs/{job['id']}").json()['inventoryItems']
        self.assertEqual(usage[0]['itemName'], 'Gloss Black')
        self.assertIsNone(usage[0]['inventoryItemId'])
        self.assertIsNone(self.refreshed(InventoryItem, item['id']))


class ServiceCatalogApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sign_in_as('admin')

    def test_filter_by_category_and_unique_names(self) -> None:
        self.client.post('/api/services', json={'name': 'Wheel', 'category': 'powder', 'price': '40'})
        self.client.post('/api/services', json={'name': 'Header', 'category': 'ceramic', 'price': '150'})

        ceramic = self.client.get('/api/services', params={'category': 'ceramic'}).json()
        duplicate = self.client.post('/api/services', json={'name': 'Wheel', 'category': 'powder', 'price': '10'})

        self.assertEqual([service['name'] for service in ceramic], ['Header'])
        self.assertEqual(ceramic[0]['price'], '150.00')
        self.assertEqual(duplicate.status_code, 400)


class SecurityHeaderTests(ApiTestCase):
    def test_api_responses_are_not_cached(self) -> None:
        response = self.client.get('/api/jobs')

        self.assertEqual(response.headers['Cache-Control'], 'no-store')
        self.assertEqual(response.headers['X-Content-Type-Options'], 'nosniff')
        self.assertIn('noindex', response.headers['X-Robots-Tag'])
        self.assertEqual(response.headers['X-Frame-Options'], 'DENY')

    def test_robots_txt(self) -> None:
        response = self.client.get('/robots.txt')

        self.assertEqual(response.status_code, 200)
        self.assertIn('Disallow: /', response.text)
        self.assertNotIn('Cache-Control', response.headers)
