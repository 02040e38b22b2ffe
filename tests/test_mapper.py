"""Unit tests for ConsultingTracker.core.mapper."""
import unittest

from ConsultingTracker.core import mapper
from ConsultingTracker.core import models
from ConsultingTracker.core.models import Collection


def full_client() -> models.Client:
    return models.Client(
        id='c1', name='Acme', currency='EUR', rate=125.5, billing_type='monthly', invoice_required=True,
        payment_terms='Net 30', payment_method='Wire', contact_name='Ada', contact_email='ada@acme.test',
        notes='VIP', is_active=False, created_at='2025-01-01T10:00:00+00:00', updated_at='2025-01-02T10:00:00+00:00',
    )


class RoundTripTest(unittest.TestCase):

    def test_client_round_trip(self):
        client = full_client()
        self.assertEqual(mapper.from_rows(Collection.Clients, mapper.to_rows(Collection.Clients, [client])), [client])

    def test_minimal_client_round_trip_keeps_none(self):
        client = models.Client(id='c2', name='Bare', updated_at='2025-01-01T00:00:00+00:00')
        [parsed] = mapper.from_rows(Collection.Clients, mapper.to_rows(Collection.Clients, [client]))
        self.assertEqual(parsed, client)
        self.assertIsNone(parsed.payment_terms)

    def test_time_entry_optional_fields(self):
        entries = [
            models.TimeEntry(id='t1', client_id='c1', date='2025-01-03', hours=1.25),
            models.TimeEntry(id='t2', client_id='c1', date='2025-01-04', project_id='p1', hours=0.0,
                             fixed_amount=500.0, description='Retainer', paid_date='2025-02-01'),
        ]
        parsed = mapper.from_rows(Collection.TimeEntries, mapper.to_rows(Collection.TimeEntries, entries))
        self.assertEqual(parsed, entries)
        self.assertIsNone(parsed[0].fixed_amount)
        self.assertIsNone(parsed[0].project_id)

    def test_text_keeps_surrounding_whitespace(self):
        entry = models.TimeEntry(id='t1', client_id='c1', date='2025-01-03', hours=3.0,
                                 description='Fixed bug\n  - details ')
        parsed = mapper.from_rows(Collection.TimeEntries, mapper.to_rows(Collection.TimeEntries, [entry]))
        self.assertEqual(parsed, [entry])

        client = models.Client(id='c1', name=' Acme ', notes='\nline one\nline two\n')
        self.assertEqual(mapper.from_rows(Collection.Clients, mapper.to_rows(Collection.Clients, [client])), [client])

        profile = models.Profile(name='Me', address='1 Main St\nSpringfield ')
        self.assertEqual(mapper.profile_from_rows(mapper.profile_to_rows(profile)), profile)

    def test_numbers_and_flags_ignore_surrounding_whitespace(self):
        table = [['ID', 'Name', 'Rate', 'Active'], ['c1', 'Acme', ' 120.5 ', ' no ']]
        [client] = mapper.from_rows(Collection.Clients, table)
        self.assertEqual(client.rate, 120.5)
        self.assertFalse(client.is_active)

    def test_invoice_id_list(self):
        invoices = [
            models.Invoice(id='i1', client_id='c1', invoice_date='2025-02-01', invoice_number='INV-1',
                           time_entry_ids=['t1', 't2'], total_hours=3.5, total_amount=437.5, rate_used=125.0,
                           status='sent'),
            models.Invoice(id='i2', client_id='c1', invoice_date='2025-03-01'),
        ]
        rows = mapper.to_rows(Collection.Invoices, invoices)
        self.assertIn('t1;t2', rows[1])
        self.assertEqual(mapper.from_rows(Collection.Invoices, rows), invoices)
        self.assertEqual(mapper.from_rows(Collection.Invoices, rows)[1].time_entry_ids, [])

    def test_snapshot_round_trip(self):
        snapshot = models.Snapshot(
            clients=[full_client()],
            projects=[models.Project(id='p1', client_id='c1', name='Site')],
            profile=models.Profile(name='Me', ein='12-345'),
        )
        self.assertEqual(mapper.tables_to_snapshot(mapper.snapshot_to_tables(snapshot)), snapshot)


class WriteTest(unittest.TestCase):

    def test_header_is_always_full(self):
        rows = mapper.to_rows(Collection.Projects, [])
        self.assertEqual(rows, [['ID', 'Client ID', 'Name', 'Active', 'Created', 'Updated']])

    def test_cells_are_text(self):
        rows = mapper.to_rows(Collection.Clients, [full_client()])
        self.assertTrue(all(isinstance(cell, str) for cell in rows[1]))
        header = rows[0]
        self.assertEqual(rows[1][header.index('Invoice Required')], 'Yes')
        self.assertEqual(rows[1][header.index('Active')], 'No')
        self.assertEqual(rows[1][header.index('Rate')], '125.5')


class ReadTest(unittest.TestCase):

    def test_columns_located_by_header(self):
        table = [
            ['Name', 'ID', 'Updated'],
            ['Acme', 'c1', '2025-01-01T00:00:00Z'],
        ]
        [client] = mapper.from_rows(Collection.Clients, table)
        self.assertEqual(client.id, 'c1')
        self.assertEqual(client.name, 'Acme')
        self.assertEqual(client.updated_at, '2025-01-01T00:00:00Z')

    def test_missing_columns_use_neutral_defaults(self):
        [client] = mapper.from_rows(Collection.Clients, [['ID', 'Name'], ['c1', 'Acme']])
        self.assertEqual(client.rate, 0.0)
        self.assertEqual(client.billing_type, 'hourly')
        self.assertTrue(client.is_active)
        self.assertFalse(client.invoice_required)
        self.assertIsNone(client.contact_email)
        self.assertEqual(client.currency, '')

    def test_legacy_headers(self):
        table = [
            ['ID', 'Company ID', 'Name'],
            ['p1', 'c1', 'Site'],
        ]
        [project] = mapper.from_rows(Collection.Projects, table)
        self.assertEqual(project.client_id, 'c1')

        [client] = mapper.from_rows(Collection.Clients, [['ID', 'Name', 'Hourly Rate'], ['c1', 'Acme', '90']])
        self.assertEqual(client.rate, 90.0)

    def test_short_rows_are_padded(self):
        # Sheets drops trailing empty cells
        table = mapper.to_rows(Collection.TimeEntries, [])
        table.append(['t1', 'c1'])
        [entry] = mapper.from_rows(Collection.TimeEntries, table)
        self.assertEqual(entry.id, 't1')
        self.assertEqual(entry.date, '')
        self.assertEqual(entry.hours, 0.0)

    def test_blank_id_rows_are_skipped(self):
        table = [['ID', 'Name'], ['', 'Ghost'], ['c1', 'Acme'], []]
        self.assertEqual([c.id for c in mapper.from_rows(Collection.Clients, table)], ['c1'])

    def test_bool_variants(self):
        table = [['ID', 'Name', 'Active'], ['a', 'A', 'TRUE'], ['b', 'B', 'false'], ['c', 'C', '0'], ['d', 'D', '']]
        flags = [c.is_active for c in mapper.from_rows(Collection.Clients, table)]
        self.assertEqual(flags, [True, False, False, True])

    def test_unknown_status_reads_draft(self):
        table = [['ID', 'Client ID', 'Date', 'Status'], ['i1', 'c1', '2025-01-01', 'Overdue'],
                 ['i2', 'c1', '2025-01-01', 'PAID']]
        statuses = [i.status for i in mapper.from_rows(Collection.Invoices, table)]
        self.assertEqual(statuses, ['draft', 'paid'])

    def test_bad_number_reads_zero(self):
        [client] = mapper.from_rows(Collection.Clients, [['ID', 'Name', 'Rate'], ['c1', 'Acme', 'n/a']])
        self.assertEqual(client.rate, 0.0)

    def test_empty_table(self):
        self.assertEqual(mapper.from_rows(Collection.Invoices, []), [])

    def test_legacy_worksheet_name(self):
        tables = {'Companies': [['ID', 'Name'], ['c1', 'Acme']]}
        snapshot = mapper.tables_to_snapshot(tables)
        self.assertEqual([c.id for c in snapshot.clients], ['c1'])
        self.assertIn('Companies', mapper.read_table_names())


class ProfileAndMetaTest(unittest.TestCase):

    def test_profile_missing_fields(self):
        profile = mapper.profile_from_rows([['Field', 'Value'], ['Name', 'Me'], ['Unknown', 'x'], ['EIN']])
        self.assertEqual(profile, models.Profile(name='Me'))

    def test_meta(self):
        self.assertEqual(mapper.meta_from_rows(mapper.meta_to_rows('2025-01-01T00:00:00Z')), '2025-01-01T00:00:00Z')
        self.assertIsNone(mapper.meta_from_rows([]))
        self.assertIsNone(mapper.meta_from_rows([['Key', 'Value'], ['lastModified', '']]))
