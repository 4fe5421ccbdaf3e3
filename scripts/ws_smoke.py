import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
from app.main import app
from fastapi.testclient import TestClient
import json

ROOM = 'ws-smoke'


def run():
    print('Starting TestClient and connecting websocket')
    with TestClient(app) as client:
        with client.websocket_connect(f'/api/trading-room/{ROOM}/ws/open-orders') as ws:
            payload = {'symbol': 'BTCUSDT', 'side': 'long', 'limitPrice': 100.0, 'quantity': 1}
            print('Creating open order:', payload)
            order_id = client.post(f'/api/trading-room/{ROOM}/open-orders', json=payload).json()['id']
            print('Received via WS:', json.dumps(ws.receive_json()))

            print('Filling order', order_id)
            client.patch(f'/api/trading-room/{ROOM}/open-orders', json={'action': 'fill', 'orderId': order_id, 'fillPrice': 99.5})
            print('Received via WS:', json.dumps(ws.receive_json()))
    print('Done')


if __name__ == "__main__":
    run()
