"""Tests for authentication routes."""
import json


def test_register(client):
    res = client.post('/api/auth/register', json={
        'username': 'testuser', 'email': 'Test@Test.com',
        'password': 'password123', 'name': 'Test User',
    })
    assert res.status_code == 201
    data = json.loads(res.data)
    assert 'token' in data
    assert data['user']['username'] == 'testuser'
    assert data['user']['email'] == 'test@test.com'


def test_register_missing_fields(client):
    res = client.post('/api/auth/register', json={'username': 'x'})
    assert res.status_code == 400


def test_register_duplicate_username(client):
    client.post('/api/auth/register', json={
        'username': 'dup', 'email': 'dup@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/register', json={
        'username': 'dup', 'email': 'dup2@test.com', 'password': 'password123',
    })
    assert res.status_code == 409


def test_register_rejects_weak_password(client):
    res = client.post('/api/auth/register', json={
        'username': 'weakpw', 'email': 'weakpw@test.com', 'password': 'abcdefg',
    })
    assert res.status_code == 400
    assert 'Password must' in json.loads(res.data)['error']


def test_login(client):
    client.post('/api/auth/register', json={
        'username': 'loginuser', 'email': 'login@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/login', json={
        'email': 'login@test.com', 'password': 'password123',
    })
    assert res.status_code == 200
    assert 'token' in json.loads(res.data)


def test_login_bad_password(client):
    client.post('/api/auth/register', json={
        'username': 'badpw', 'email': 'bad@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/login', json={
        'email': 'bad@test.com', 'password': 'wrong',
    })
    assert res.status_code == 401


def test_me_lists_memberships(client, auth_headers):
    res = client.get('/api/auth/me', headers=auth_headers)
    assert res.status_code == 200
    data = json.loads(res.data)
    assert data['user']['username'] == 'testuser'
    assert data['memberships'] == []


def test_invalid_token(client):
    res = client.get('/api/auth/me', headers={'Authorization': 'Bearer garbage'})
    assert res.status_code == 401
    assert json.loads(res.data)['error'] == 'Invalid token'


def test_csrf_token_required_for_cross_origin_writes(client, build):
    user = build.user('writer')
    headers = dict(build.headers(user), Origin='https://app.example.com')
    tournament = build.tournament()

    res = client.post(f'/api/tournaments/{tournament.id}/register', json={}, headers=headers)
    assert res.status_code == 403
    assert json.loads(res.data)['error'] == 'Invalid CSRF token'

    csrf = json.loads(client.get('/api/auth/csrf', headers=build.headers(user)).data)['csrf_token']
    headers['X-CSRF-Token'] = csrf
    res = client.post(f'/api/tournaments/{tournament.id}/register', json={}, headers=headers)
    assert res.status_code == 400
