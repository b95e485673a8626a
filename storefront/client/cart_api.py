import logging

import requests

logger = logging.getLogger(__name__)


class CartApiError(Exception):
    """A cart API call failed; ``status_code`` is None for network errors."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CartApiClient:
    """Thin wrapper over the ``/api/cart`` endpoints.

    Uses a ``requests.Session`` so the login cookie set by
    :meth:`login` is sent on every later call.
    """

    def __init__(self, base_url, session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})

    def _request(self, method, path, **kwargs):
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(
                method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("Cart API %s %s failed: %s", method, path, e)
            raise CartApiError(str(e)) from e

        if response.status_code >= 400:
            try:
                message = response.json().get('error')
            except ValueError:
                message = None
            raise CartApiError(
                message or f'HTTP {response.status_code}',
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    def login(self, email, password):
        data = self._request(
            'POST',
            '/api/auth/login',
            json={'email': email, 'password': password},
        )
        return data.get('user')

    def get_cart(self):
        return self._request('GET', '/api/cart').get('items', [])

    def add_item(self, product_id, quantity, unit_price, variant_id=None,
                 customization=None):
        data = self._request('POST', '/api/cart', json={
            'product_id': product_id,
            'variant_id': variant_id,
            'quantity': quantity,
            'unit_price': unit_price,
            'customization': customization,
        })
        return data.get('item')

    def update_item(self, item_id, quantity):
        """Returns the updated item, or None when the server removed it."""
        data = self._request(
            'PUT', f'/api/cart/{item_id}', json={'quantity': quantity})
        return data.get('item')

    def remove_item(self, item_id):
        self._request('DELETE', f'/api/cart/{item_id}')

    def clear(self):
        self._request('DELETE', '/api/cart')

    def sync(self, items):
        return self._request(
            'POST', '/api/cart/sync', json={'items': items}).get('items', [])
