import datetime

import pytest

from aura.models import Salon


@pytest.mark.salon
class TestSalonDetails:
    def test_get_salon_by_slug(self, client, studio_x):
        response = client.get('/api/salons/studio-x')
        assert response.status_code == 200
        data = response.json
        assert data['name'] == 'Studio X'
        assert data['pays_on_site'] is True
        assert data['assistant_enabled'] is True
        assert data['operating_hours']['sunday']['closed'] is True

    def test_get_salon_nonexistent(self, client, db):
        response = client.get('/api/salons/nowhere')
        assert response.status_code == 404

    def test_catalog_hides_out_of_stock_products(self, client, studio_x):
        response = client.get(f'/api/salons/{studio_x.id}/catalog')
        assert response.status_code == 200
        assert [p['name'] for p in response.json['products']] == ['Shampoo']
        assert {s['name'] for s in response.json['services']} == {'Corte', 'Escova'}
        assert response.json['services'][0]['price'] == '50.00'


@pytest.mark.salon
class TestOperatingHours:
    def test_portuguese_keys_are_stored_in_english(self, client, db, studio_x):
        response = client.put(
            f'/api/salons/{studio_x.id}/hours',
            json={
                'segunda-feira': {'closed': False, 'open': '10:00', 'close': '19:00'},
                'Sábado': {'closed': True},
            },
        )
        assert response.status_code == 200

        db.session.expire_all()
        stored = db.session.get(Salon, studio_x.id).operating_hours
        assert set(stored) == {'monday', 'saturday'}
        assert stored['monday'] == {'closed': False, 'open': '10:00', 'close': '19:00'}

    @pytest.mark.parametrize(
        'payload',
        [
            {'funday': {'closed': False, 'open': '09:00', 'close': '18:00'}},
            {'monday': {'closed': False, 'open': '18:00', 'close': '09:00'}},
            {'monday': {'closed': False, 'open': 'nine'}},
            ['monday'],
        ],
    )
    def test_invalid_hours_rejected(self, client, studio_x, payload):
        response = client.put(f'/api/salons/{studio_x.id}/hours', json=payload)
        assert response.status_code == 400

    def test_professional_override_wins(self, client, studio_x, ana, next_tuesday):
        client.put(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/hours',
            json={'terça': {'closed': False, 'open': '12:00', 'close': '16:00'}},
        )
        response = client.get(
            f'/api/salons/{studio_x.id}/window?date={next_tuesday.isoformat()}&professional_id={ana.id}'
        )
        assert response.json['weekday'] == 'tuesday'
        assert response.json['window'] == {'closed': False, 'open': '12:00', 'close': '16:00'}

        salon_only = client.get(f'/api/salons/{studio_x.id}/window?date={next_tuesday.isoformat()}')
        assert salon_only.json['window']['open'] == '09:00'

    def test_unconfigured_day_is_open(self, client, db, studio_x, next_tuesday):
        client.put(f'/api/salons/{studio_x.id}/hours', json={'monday': {'closed': True}})
        response = client.get(f'/api/salons/{studio_x.id}/window?date={next_tuesday.isoformat()}')
        assert response.json['window'] == {'closed': False, 'open': '09:00', 'close': '18:00'}


@pytest.mark.salon
class TestSlotsEndpoint:
    def test_empty_tuesday_has_eighteen_slots(self, client, studio_x, ana, next_tuesday):
        response = client.get(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/slots'
            f'?date={next_tuesday.isoformat()}&duration=30'
        )
        assert response.status_code == 200
        slots = response.json['slots']
        assert len(slots) == 18
        assert slots[0] == '09:00'
        assert slots[-1] == '17:30'

    def test_duration_from_services(self, client, studio_x, ana, corte, escova, next_tuesday):
        response = client.get(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/slots'
            f'?date={next_tuesday.isoformat()}&service_ids={corte.id},{escova.id}'
        )
        assert response.json['duration_min'] == 60
        assert response.json['slots'][-1] == '17:00'

    def test_closed_sunday(self, client, studio_x, ana, next_tuesday):
        sunday = next_tuesday + datetime.timedelta(days=5)
        response = client.get(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/slots?date={sunday.isoformat()}&duration=30'
        )
        assert response.json['slots'] == []

    def test_past_date(self, client, studio_x, ana, salon_today):
        yesterday = salon_today - datetime.timedelta(days=1)
        response = client.get(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/slots?date={yesterday.isoformat()}&duration=30'
        )
        assert response.json['slots'] == []

    def test_duration_or_services_required(self, client, studio_x, ana, next_tuesday):
        response = client.get(
            f'/api/salons/{studio_x.id}/professionals/{ana.id}/slots?date={next_tuesday.isoformat()}'
        )
        assert response.status_code == 400


@pytest.mark.salon
class TestPromoLink:
    def test_issue_link(self, client, studio_x):
        response = client.post(f'/api/salons/{studio_x.id}/promo-link')
        assert response.status_code == 201
        assert response.json['discount_percent'] == 20
        assert response.json['path'].startswith('/book/studio-x?promo=1&token=')

    def test_assistant_disabled(self, client, db, studio_x):
        studio_x.ai_enabled = False
        db.session.commit()
        response = client.post(f'/api/salons/{studio_x.id}/promo-link')
        assert response.status_code == 403
