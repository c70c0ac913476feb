import csv
from io import StringIO

from app import app, db_connect


def test_admin_routes_forbidden_for_anonymous_and_players(client, signup):
    for path in ('/api/admin/stats', '/api/admin/users', '/api/admin/qr-sheet.pdf', '/api/admin/export-visits'):
        assert client.get(path).status_code == 403
    signup()
    resp = client.get('/api/admin/stats')
    assert resp.status_code == 403
    assert resp.get_json() == {'error': 'Forbidden'}
    assert client.post('/api/admin/restaurants', json={'name': 'X', 'code': 'X'}).status_code == 403


def test_admin_flag_is_checked_on_every_request(client, login):
    login()
    assert client.get('/api/admin/stats').status_code == 200
    conn = db_connect()
    conn.execute("UPDATE users SET is_admin = 0 WHERE email = 'admin@example.com'")
    conn.commit()
    conn.close()
    assert client.get('/api/admin/stats').status_code == 403


def test_admin_stats(client, signup, login, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup()
    client.post('/api/check-in', json={'code': 'PIZZA1'})
    login()
    assert client.get('/api/admin/stats').get_json() == {
        'totalRestaurants': 1,
        'totalUsers': 2,
        'totalVisits': 1,
    }


def test_create_restaurant(client, login):
    login()
    resp = client.post('/api/admin/restaurants', json={
        'name': 'Blue Door Cafe',
        'code': ' bdc01 ',
        'latitude': '39.95',
        'longitude': -75.16,
        'address': '12 Main St',
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['code'] == 'BDC01'
    assert body['latitude'] == 39.95

    dup = client.post('/api/admin/restaurants', json={
        'name': 'Other', 'code': 'bdc01', 'latitude': 1, 'longitude': 2,
    })
    assert dup.status_code == 409


def test_create_restaurant_validation(client, login):
    login()
    resp = client.post('/api/admin/restaurants', json={'name': '', 'latitude': 'north'})
    assert resp.status_code == 400
    fields = resp.get_json()['fields']
    assert set(fields) == {'name', 'code', 'latitude', 'longitude'}


def test_update_restaurant(client, login, add_restaurant):
    restaurant_id = add_restaurant('Pizza Palace', 'PIZZA1')
    login()
    resp = client.put(f'/api/admin/restaurants/{restaurant_id}', json={'specials': '2-for-1 slices'})
    assert resp.status_code == 200
    assert resp.get_json()['specials'] == '2-for-1 slices'
    assert resp.get_json()['code'] == 'PIZZA1'

    assert client.put('/api/admin/restaurants/9999', json={'name': 'Ghost'}).status_code == 404
    assert client.put(f'/api/admin/restaurants/{restaurant_id}', json={}).status_code == 400


def test_delete_restaurant_removes_visits_and_updates_stats(client, signup, login, add_restaurant, user_stats):
    ids = [add_restaurant(f'R{i}', f'CODE{i}') for i in range(4)]
    user_id = signup()
    for i in range(4):
        client.post('/api/check-in', json={'code': f'CODE{i}'})
    assert user_stats(user_id) == (4, 1)

    login()
    resp = client.delete(f'/api/admin/restaurants/{ids[0]}')
    assert resp.status_code == 200
    assert user_stats(user_id) == (3, 0)
    assert client.delete(f'/api/admin/restaurants/{ids[0]}').status_code == 404


def test_list_users(client, signup, login, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup(email='jane@example.com', name='Jane')
    client.post('/api/check-in', json={'code': 'PIZZA1'})
    login()
    users = client.get('/api/admin/users').get_json()['users']
    jane = next(u for u in users if u['email'] == 'jane@example.com')
    assert jane['visitCount'] == 1
    assert jane['isAdmin'] is False


def test_user_visits_get_and_put(client, signup, login, add_restaurant, user_stats):
    ids = [add_restaurant(f'R{i}', f'CODE{i}') for i in range(5)]
    user_id = signup()
    client.post('/api/check-in', json={'code': 'CODE0'})

    login()
    assert client.get('/api/admin/user-visits').status_code == 400
    visits = client.get(f'/api/admin/user-visits?userId={user_id}').get_json()['visits']
    assert [v['restaurant_id'] for v in visits] == [ids[0]]

    changes = [{'restaurantId': rid, 'action': 'add'} for rid in ids[1:]]
    changes.append({'restaurantId': ids[0], 'action': 'remove'})
    resp = client.put('/api/admin/user-visits', json={'userId': user_id, 'changes': changes})
    assert resp.status_code == 200
    assert resp.get_json()['stats'] == {'visitCount': 4, 'raffleEntries': 1}
    assert user_stats(user_id) == (4, 1)


def test_user_visits_put_validation(client, signup, login):
    user_id = signup()
    login()
    bad_action = {'userId': user_id, 'changes': [{'restaurantId': 1, 'action': 'toggle'}]}
    assert client.put('/api/admin/user-visits', json=bad_action).status_code == 400
    assert client.put('/api/admin/user-visits', json={'userId': user_id}).status_code == 400
    unknown = {'userId': user_id, 'changes': [{'restaurantId': 9999, 'action': 'add'}]}
    assert client.put('/api/admin/user-visits', json=unknown).status_code == 400


def test_restaurant_qr_png(client, login, add_restaurant):
    restaurant_id = add_restaurant("Joe's Diner", 'JOE1')
    login()
    resp = client.get(f'/api/admin/restaurants/{restaurant_id}/qr.png')
    assert resp.status_code == 200
    assert resp.mimetype == 'image/png'
    assert resp.data.startswith(b'\x89PNG')
    assert 'joe-s-diner-qr.png' in resp.headers['Content-Disposition']
    assert client.get('/api/admin/restaurants/9999/qr.png').status_code == 404


def test_qr_sheet_pdf(client, login, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    add_restaurant('Taco Town', 'TACO22')
    app.config['PUBLIC_BASE_URL'] = 'https://bingo.example.com'
    login()
    resp = client.get('/api/admin/qr-sheet.pdf')
    assert resp.status_code == 200
    assert resp.mimetype == 'application/pdf'
    assert resp.data.startswith(b'%PDF')


def test_export_visits_csv(client, signup, login, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup(email='jane@example.com', name='Jane')
    client.post('/api/check-in', json={'code': 'PIZZA1'})
    login()
    resp = client.get('/api/admin/export-visits')
    assert resp.status_code == 200
    rows = list(csv.reader(StringIO(resp.data.decode('utf-8'))))
    assert rows[0] == ['visited_at', 'email', 'name', 'restaurant', 'code']
    assert rows[1][1:] == ['jane@example.com', 'Jane', 'Pizza Palace', 'PIZZA1']


def test_public_restaurant_list_marks_visits(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    add_restaurant('Taco Town', 'TACO22')
    conn = db_connect()
    conn.execute("INSERT INTO sponsors (name, address, is_retail) VALUES ('Hardware Co', '1 Elm St', 1)")
    conn.commit()
    conn.close()

    anonymous = client.get('/api/restaurants').get_json()
    assert all(r['visited'] is False for r in anonymous['restaurants'])
    assert all('code' not in r for r in anonymous['restaurants'])
    assert anonymous['sponsors'][0]['is_retail'] is True

    signup()
    client.post('/api/check-in', json={'code': 'TACO22'})
    visited = {r['name']: r['visited'] for r in client.get('/api/restaurants').get_json()['restaurants']}
    assert visited == {'Pizza Palace': False, 'Taco Town': True}


def test_public_stats(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    add_restaurant('Taco Town', 'TACO22')
    signup()
    client.post('/api/check-in', json={'code': 'PIZZA1'})
    client.post('/api/check-in', json={'code': 'TACO22'})
    signup(email='second@example.com')
    client.post('/api/check-in', json={'code': 'PIZZA1'})

    body = client.get('/api/stats').get_json()
    assert body['totals'] == {'restaurants': 2, 'visits': 3, 'activePlayers': 2, 'raffleEntries': 0}
    assert body['restaurantVisits'][0] == {'id': 1, 'name': 'Pizza Palace', 'visits': 2}
    assert len(body['visitsByHour']) == 24
    assert sum(h['visits'] for h in body['visitsByHour']) == 3
    assert body['playerEngagement'] == [{'visits': 1, 'players': 1}, {'visits': 2, 'players': 1}]


def test_health_and_metrics(client):
    assert client.get('/health').get_json()['status'] == 'ok'
    body = client.get('/metrics').get_json()
    assert body['requests_total'] >= 1
    assert 'avg_latency_ms' in body


def test_unknown_route_is_json(client):
    resp = client.get('/api/nope')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Not found'}
