from decimal import Decimal
from unittest import mock

import requests
from django.test import SimpleTestCase

from homeservices.bookings import share_distance_charge
from homeservices.commission import split_commission, split_multiple
from homeservices.exceptions import ExternalServiceError
from homeservices.pricing import (
    NominatimDistanceResolver,
    distance_charge_for,
    haversine_km,
    resolve_distance,
)

ADDRESS = {'street': 'Lanka Road', 'city': 'Varanasi', 'state': 'Uttar Pradesh', 'pincode': '221005'}


class CommissionTests(SimpleTestCase):
    def test_split_with_distance_charge(self):
        split = split_commission(Decimal('1000'), Decimal('200'))
        self.assertEqual(split.admin_commission, Decimal('200'))
        self.assertEqual(split.worker_payment, Decimal('800'))
        self.assertEqual(split.total_amount, Decimal('1200'))

    def test_zero_amounts(self):
        split = split_commission(0, 0)
        self.assertEqual(split.admin_commission, Decimal('0'))
        self.assertEqual(split.worker_payment, Decimal('0'))
        self.assertEqual(split.total_amount, Decimal('0'))

    def test_commission_rounds_half_up_to_whole_units(self):
        split = split_commission(Decimal('12.50'))
        self.assertEqual(split.admin_commission, Decimal('3'))
        self.assertEqual(split.worker_payment, Decimal('9.50'))
        self.assertEqual(split.admin_commission + split.worker_payment, Decimal('12.50'))

    def test_multiple_services_commission_each_line(self):
        split = split_multiple(
            [
                {'service_type': 'Plumbing', 'amount': Decimal('300'), 'quantity': 2},
                {'service_type': 'Cleaning', 'amount': Decimal('150')},
            ],
            distance_charge=Decimal('50'),
        )
        self.assertEqual(split.total_service_amount, Decimal('750'))
        self.assertEqual(split.total_admin_commission, Decimal('150'))
        self.assertEqual(split.total_worker_payment, Decimal('600'))
        self.assertEqual(split.total_amount, Decimal('800'))
        self.assertEqual(split.services_breakdown[0]['service_amount'], Decimal('600'))
        self.assertEqual(split.services_breakdown[1]['worker_payment'], Decimal('120'))

    def test_distance_charge_shares_sum_to_total(self):
        shares = share_distance_charge(Decimal('50'), 3)
        self.assertEqual(shares, [Decimal('18'), Decimal('16'), Decimal('16')])
        self.assertEqual(sum(shares), Decimal('50'))


class DistanceTests(SimpleTestCase):
    def test_haversine_same_point_is_zero(self):
        self.assertEqual(haversine_km(25.5, 82.3, 25.5, 82.3), Decimal('0.00'))

    def test_distance_charge_rate(self):
        self.assertEqual(distance_charge_for(Decimal('4.96')), Decimal('50'))

    def test_coordinates_skip_geocoding(self):
        session = mock.Mock()
        resolver = NominatimDistanceResolver(session=session)
        quote = resolver.quote(coordinates={'latitude': 25.3176, 'longitude': 82.9739})
        session.get.assert_not_called()
        self.assertGreater(quote.distance, Decimal('0'))
        self.assertEqual(quote.distance_charge, distance_charge_for(quote.distance))
        self.assertIsNone(quote.error)

    def test_geocoded_address_uses_best_match(self):
        response = mock.Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = [
            {
                'lat': '25.2677',
                'lon': '82.9913',
                'display_name': 'Lanka, Varanasi',
                'address': {'postcode': '221005', 'city': 'Varanasi', 'state': 'Uttar Pradesh', 'road': 'Lanka Road'},
            }
        ]
        session = mock.Mock()
        session.get.return_value = response

        quote = NominatimDistanceResolver(session=session).quote(address=ADDRESS)

        self.assertEqual(quote.customer_coordinates['latitude'], 25.2677)
        self.assertAlmostEqual(quote.customer_coordinates['accuracy'], 1.0)
        _, kwargs = session.get.call_args
        self.assertIn('User-Agent', kwargs['headers'])

    def test_network_failure_falls_back_to_default_distance(self):
        session = mock.Mock()
        session.get.side_effect = requests.ConnectionError('unreachable')
        quote = resolve_distance(NominatimDistanceResolver(session=session), address=ADDRESS)
        self.assertEqual(quote.distance, Decimal('15.00'))
        self.assertEqual(quote.distance_charge, Decimal('150'))
        self.assertIsNone(quote.customer_coordinates)
        self.assertTrue(quote.error)

    def test_low_accuracy_match_is_ignored(self):
        response = mock.Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = [
            {'lat': '26.0', 'lon': '80.0', 'address': {'state': 'Uttar Pradesh'}},
        ]
        session = mock.Mock()
        session.get.return_value = response
        resolver = NominatimDistanceResolver(session=session)
        with self.assertRaises(ExternalServiceError):
            resolver.quote(address=ADDRESS)
        self.assertEqual(resolve_distance(resolver, address=ADDRESS).distance, Decimal('15.00'))

    def test_unexpected_resolver_error_never_escapes(self):
        resolver = mock.Mock()
        resolver.quote.side_effect = KeyError('lat')
        quote = resolve_distance(resolver, address=ADDRESS)
        self.assertEqual(quote.distance_charge, Decimal('150'))
