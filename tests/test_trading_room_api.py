from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from app.main import app
from app.models.open_order import OpenOrder
from app.models.position import Position
from app.models.scheduled_order import ScheduledOrder
from app.routes import trading_room
from app.services.trading import is_ready

client = TestClient(app)

ROOM = 'room-1'
BASE = f'/api/trading-room/{ROOM}'


def create_order(side='long', limit_price=100.0, symbol='BTCUSDT', http=None, **extra):
    body = {'symbol': symbol, 'side': side, 'limitPrice': limit_price, 'quantity': 2, 'leverage': 10}
    body.update(extra)
    resp = (http or client).post(f'{BASE}/open-orders', json=body)
    assert resp.status_code == 201
    return resp.json()['id']


def test_create_and_list_open_orders(db):
    order_id = create_order()
    create_order(symbol='ETHUSDT')

    resp = client.get(f'{BASE}/open-orders', params={'symbol': 'BTCUSDT'})
    assert resp.status_code == 200
    data = resp.json()['data']
    assert [o['id'] for o in data] == [order_id]
    assert data[0]['status'] == 'open'


def test_create_open_order_missing_fields(db):
    resp = client.post(f'{BASE}/open-orders', json={'symbol': 'BTCUSDT', 'side': 'long'})
    assert resp.status_code == 400
    assert resp.json()['error'] == 'Missing required fields'


def test_fill_creates_position_and_marks_filled(db):
    order_id = create_order(side='long', limit_price=100.0)

    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 99.5})
    assert resp.status_code == 200
    position_id = resp.json()['positionId']

    db.expire_all()
    order = db.query(OpenOrder).filter(OpenOrder.id == order_id).one()
    assert order.status == 'filled'
    assert order.position_id == position_id
    assert order.filled_at is not None

    pos = db.query(Position).filter(Position.id == position_id).one()
    assert pos.entry_price == 99.5
    assert pos.quantity == 2
    assert abs(pos.fee - 99.5 * 2 * 0.0005) < 1e-9
    assert abs(pos.initial_margin - 99.5 * 2 / 10) < 1e-9
    assert abs(pos.liquidation_price - 99.5 * (1 - 0.1 + 0.005)) < 1e-9


def test_fill_prefers_side_quote(db):
    order_id = create_order(side='short', limit_price=100.0)
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 105, 'bid': 101, 'ask': 102})
    assert resp.status_code == 200
    pos = db.query(Position).filter(Position.id == resp.json()['positionId']).one()
    assert pos.entry_price == 101


def test_fill_falls_back_to_limit_price(db):
    order_id = create_order(limit_price=100.0)
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 0})
    pos = db.query(Position).filter(Position.id == resp.json()['positionId']).one()
    assert pos.entry_price == 100.0


def test_fill_is_idempotent_once_filled(db):
    order_id = create_order()
    client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 99})
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 98})
    assert resp.json() == {'ok': True}
    assert db.query(Position).count() == 1


def test_cancel_and_unknown_action(db):
    order_id = create_order()
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'cancel', 'orderId': order_id})
    assert resp.json() == {'ok': True}
    db.expire_all()
    assert db.query(OpenOrder).filter(OpenOrder.id == order_id).one().status == 'cancelled'

    resp = client.patch(f'{BASE}/open-orders', json={'action': 'explode', 'orderId': order_id})
    assert resp.status_code == 400


def test_patch_missing_order(db):
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': 'nope', 'fillPrice': 1})
    assert resp.status_code == 404
    resp = client.patch(f'{BASE}/open-orders', json={'action': 'fill'})
    assert resp.status_code == 400


def test_change_feed_publishes_insert_and_fill(db):
    with TestClient(app) as live, live.websocket_connect(f'{BASE}/ws/open-orders') as ws:
        order_id = create_order(http=live)
        inserted = ws.receive_json()
        assert inserted['eventType'] == 'INSERT'
        assert inserted['new']['id'] == order_id
        assert inserted['old'] is None

        live.patch(f'{BASE}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 99})
        updated = ws.receive_json()
        assert updated['eventType'] == 'UPDATE'
        assert updated['old']['status'] == 'open'
        assert updated['new']['status'] == 'filled'


def test_delete_open_order_publishes_delete(db):
    with TestClient(app) as live, live.websocket_connect(f'{BASE}/ws/open-orders') as ws:
        order_id = create_order(http=live)
        ws.receive_json()

        assert live.delete(f'{BASE}/open-orders/{order_id}').json() == {'ok': True}
        deleted = ws.receive_json()
        assert deleted['eventType'] == 'DELETE'
        assert deleted['old']['id'] == order_id
        assert deleted['new'] is None

        assert live.delete(f'{BASE}/open-orders/{order_id}').status_code == 404
    assert db.query(OpenOrder).count() == 0

def scheduled_body(**overrides):
    body = {'symbol': 'BTCUSDT', 'side': 'buy', 'order_type': 'market', 'quantity': 1,
            'leverage': 5, 'schedule_type': 'price_based', 'trigger_condition': 'above',
            'trigger_price': 50000}
    body.update(overrides)
    return body


def create_scheduled(**overrides):
    resp = client.post(f'{BASE}/scheduled-orders', json=scheduled_body(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()['data']['id']


def test_scheduled_order_validation(db):
    resp = client.post(f'{BASE}/scheduled-orders', json={'symbol': 'BTCUSDT', 'side': 'hold', 'schedule_type': 'time_based'})
    assert resp.status_code == 400
    errors = resp.json()['errors']
    assert 'Invalid side' in errors
    assert 'quantity is required' in errors
    assert 'scheduled_at is required for time_based orders' in errors

    resp = client.post(f'{BASE}/scheduled-orders', json=scheduled_body(leverage=200))
    assert 'leverage cannot exceed 125' in resp.json()['errors']


def test_list_scheduled_orders(db):
    order_id = create_scheduled()
    resp = client.get(f'{BASE}/scheduled-orders', params={'status': 'pending'})
    assert [o['id'] for o in resp.json()['data']] == [order_id]
    assert client.get(f'{BASE}/scheduled-orders', params={'status': 'executed'}).json()['data'] == []


def test_execute_price_based_market_order(db):
    order_id = create_scheduled()
    resp = client.post(f'{BASE}/scheduled-orders/{order_id}/execute',
                       json={'client_time': '2025-12-16T00:00:00Z', 'current_price': 50050})
    assert resp.status_code == 200
    body = resp.json()
    assert body['success'] is True
    assert body['executionResult']['price'] == 50050

    db.expire_all()
    order = db.query(ScheduledOrder).filter(ScheduledOrder.id == order_id).one()
    assert order.status == 'executed'
    assert order.execution_price == 50050
    pos = db.query(Position).one()
    assert pos.side == 'long'
    assert pos.order_type == 'market'

    again = client.post(f'{BASE}/scheduled-orders/{order_id}/execute', json={'current_price': 50050})
    assert again.json()['message'] == 'Order already executed or not found'


def test_execute_not_ready_reverts_status(db):
    order_id = create_scheduled()
    resp = client.post(f'{BASE}/scheduled-orders/{order_id}/execute', json={'current_price': 49000})
    assert resp.status_code == 400
    db.expire_all()
    assert db.query(ScheduledOrder).filter(ScheduledOrder.id == order_id).one().status == 'pending'


def test_execute_fetches_price_when_missing(db, monkeypatch):
    async def fake_price(symbol):
        assert symbol == 'BTCUSDT'
        return 40000.0

    monkeypatch.setattr(trading_room, 'fetch_last_price', fake_price)
    order_id = create_scheduled(trigger_condition='below', trigger_price=45000, side='sell')
    resp = client.post(f'{BASE}/scheduled-orders/{order_id}/execute')
    assert resp.status_code == 200
    assert resp.json()['executionResult']['price'] == 40000.0
    assert db.query(Position).one().side == 'short'


def test_execute_time_based_limit_order_rests_open_order(db):
    due = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    order_id = create_scheduled(schedule_type='time_based', scheduled_at=due, order_type='limit', price=48000,
                                trigger_condition=None, trigger_price=None)
    with TestClient(app) as live, live.websocket_connect(f'{BASE}/ws/open-orders') as ws:
        resp = live.post(f'{BASE}/scheduled-orders/{order_id}/execute', json={'current_price': 50000})
        assert resp.status_code == 200
        result = resp.json()['executionResult']
        assert result['price'] == 48000
        event = ws.receive_json()
    assert event['eventType'] == 'INSERT'
    assert event['new']['id'] == result['orderId']

    resting = db.query(OpenOrder).filter(OpenOrder.id == result['orderId']).one()
    assert resting.side == 'long'
    assert resting.status == 'open'
    assert resting.limit_price == 48000


def test_scheduled_at_offset_is_stored_as_utc(db):
    order_id = create_scheduled(schedule_type='time_based', scheduled_at='2025-12-16T14:00:00+02:00')
    order = db.query(ScheduledOrder).filter(ScheduledOrder.id == order_id).one()
    assert order.scheduled_at == datetime(2025, 12, 16, 12, 0)

    time_ready, _ = is_ready(order, None, datetime(2025, 12, 16, 12, 30, tzinfo=timezone.utc))
    assert time_ready
    time_ready, _ = is_ready(order, None, datetime(2025, 12, 16, 11, 30, tzinfo=timezone.utc))
    assert not time_ready


def test_cancel_scheduled_order(db):
    order_id = create_scheduled()
    resp = client.patch(f'{BASE}/scheduled-orders/{order_id}', json={'action': 'cancel'})
    assert resp.status_code == 200
    assert resp.json()['data']['status'] == 'cancelled'
    db.expire_all()
    assert db.query(ScheduledOrder).filter(ScheduledOrder.id == order_id).one().status == 'cancelled'
    assert client.get(f'{BASE}/scheduled-orders', params={'status': 'pending'}).json()['data'] == []

    resp = client.patch(f'{BASE}/scheduled-orders/{order_id}', json={'action': 'pause'})
    assert resp.status_code == 400
    assert resp.json() == {'error': 'Invalid action'}
    assert client.patch(f'{BASE}/scheduled-orders/nope', json={'action': 'cancel'}).status_code == 404


def test_delete_scheduled_order(db):
    order_id = create_scheduled()
    assert client.delete(f'{BASE}/scheduled-orders/{order_id}').json() == {'success': True}
    assert db.query(ScheduledOrder).count() == 0


class DummyDB:
    def __init__(self):
        self.added = None
        self.rolled_back = False

    def add(self, obj):
        self.added = obj

    def commit(self):
        raise Exception("db commit failed")

    def rollback(self):
        self.rolled_back = True

    def close(self):
        pass


def test_create_open_order_commit_failure():
    dummy_db = DummyDB()

    def override_get_db():
        try:
            yield dummy_db
        finally:
            pass

    app.dependency_overrides[trading_room.get_db] = override_get_db
    try:
        resp = client.post(f'{BASE}/open-orders', json={'symbol': 'BTCUSDT', 'side': 'long', 'limitPrice': 1, 'quantity': 1})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    assert resp.json()['error'] == 'Failed to create order'
    assert dummy_db.added.symbol == 'BTCUSDT'
    assert dummy_db.rolled_back is True
