import requests

ROOM = 'smoke-room'
BASE = f'http://127.0.0.1:8000/api/trading-room/{ROOM}'

PAYLOAD = {'symbol': 'BTCUSDT', 'side': 'long', 'limitPrice': 1.0, 'quantity': 0.01}

print('Open orders before:', requests.get(f'{BASE}/open-orders', params={'symbol': 'BTCUSDT'}).json())
res = requests.post(f'{BASE}/open-orders', json=PAYLOAD)
print('POST returned:', res.status_code, res.text)
order_id = res.json().get('id')
print('Open orders now:', requests.get(f'{BASE}/open-orders', params={'symbol': 'BTCUSDT'}).json())
res = requests.patch(f'{BASE}/open-orders', json={'action': 'cancel', 'orderId': order_id})
print('Cancel returned:', res.status_code, res.text)
