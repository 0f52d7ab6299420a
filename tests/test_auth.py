import json

import jwt
import pytest

CLIENT_PASSWORD = "segredo123"


@pytest.fixture
def signup_data():
    return {
        "email": "joana@example.com",
        "password": "senha-forte",
        "full_name": "Joana Souza",
        "phone": "+55 (21) 99876-5432",
    }


@pytest.mark.auth
class TestAuthSignup:
    """Test suite for user signup functionality."""

    def test_signup_success(self, client, signup_data):
        response = client.post(
            '/api/auth/signup',
            data=json.dumps(signup_data),
            content_type='application/json'
        )
        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['status'] == 'success'
        assert data['user']['email'] == 'joana@example.com'
        assert data['user']['phone'] == '5521998765432'
        assert data['user']['role'] == 'CLIENT'

    @pytest.mark.parametrize("missing", ["email", "password", "full_name"])
    def test_signup_missing_field(self, client, signup_data, missing):
        signup_data.pop(missing)
        response = client.post('/api/auth/signup', json=signup_data)
        assert response.status_code == 400
        assert response.json['status'] == 'error'

    def test_signup_invalid_role(self, client, signup_data):
        signup_data['role'] = 'admin'
        response = client.post('/api/auth/signup', json=signup_data)
        assert response.status_code == 400

    def test_signup_short_password(self, client, signup_data):
        signup_data['password'] = '123'
        response = client.post('/api/auth/signup', json=signup_data)
        assert response.status_code == 400
        assert response.json['error'] == 'validation_error'

    def test_signup_duplicate_email(self, client, signup_data):
        client.post('/api/auth/signup', json=signup_data)
        signup_data['email'] = 'JOANA@example.com '
        response = client.post('/api/auth/signup', json=signup_data)
        assert response.status_code == 409
        assert response.json['error'] == 'already_registered'


@pytest.mark.auth
class TestAuthLogin:
    """Test suite for user login functionality."""

    def test_login_success(self, app, client, sample_client):
        response = client.post(
            '/api/auth/login',
            data=json.dumps({'email': 'maria@example.com', 'password': CLIENT_PASSWORD}),
            content_type='application/json'
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        claims = jwt.decode(data['token'], app.config['SECRET_KEY'], algorithms=['HS256'])
        assert claims['user_id'] == sample_client.id
        assert data['user']['full_name'] == 'Maria Silva'

    def test_login_missing_password(self, client):
        response = client.post('/api/auth/login', json={'email': 'maria@example.com'})
        assert response.status_code == 400

    def test_login_wrong_password(self, client, sample_client):
        response = client.post('/api/auth/login', json={'email': 'maria@example.com', 'password': 'errada'})
        assert response.status_code == 401
        assert response.json['error'] == 'invalid_credentials'

    def test_login_nonexistent_user(self, client):
        response = client.post('/api/auth/login', json={'email': 'nobody@example.com', 'password': 'whatever'})
        assert response.status_code == 401


@pytest.mark.auth
class TestContactLookup:
    def test_known_phone(self, client, sample_client):
        response = client.post('/api/auth/lookup', json={'contact': '(11) 98765-4321'})
        assert response.json == {'exists': True, 'first_name': 'Maria'}

    def test_known_email_any_case(self, client, sample_client):
        response = client.post('/api/auth/lookup', json={'contact': ' Maria@Example.com'})
        assert response.json['exists'] is True

    def test_unknown_contact(self, client, sample_client):
        response = client.post('/api/auth/lookup', json={'contact': 'ana@example.com'})
        assert response.json == {'exists': False}

    def test_garbage_contact(self, client, db):
        response = client.post('/api/auth/lookup', json={'contact': '12'})
        assert response.status_code == 400
