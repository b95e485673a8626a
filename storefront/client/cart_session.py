"""Optimistic client-side cart.

Every mutation is applied to the local cart first and persisted through
:class:`~storefront.client.storage.CartStorage`. When a
:class:`~storefront.client.cart_api.CartApiClient` is attached (after
:meth:`CartSession.login`) the matching server writes are queued and sent
in order by :meth:`CartSession.flush`, either explicitly or from a debounce
timer.

New lines get a temporary ``cart_<ms>_<rand>`` id until the server answers
the add with its own id; the temporary id is then replaced everywhere it
is referenced, including operations still waiting in the queue.
"""
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from storefront.client.cart_api import CartApiError
import copy
import json
import logging
import random
import string
import threading
import time

logger = logging.getLogger(__name__)

VAT_RATE = Decimal('0.20')
TWO_PLACES = Decimal('0.01')
TEMP_ID_PREFIX = 'cart_'

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_temp_id():
    suffix = ''.join(random.choices(_ID_ALPHABET, k=7))
    return f'{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{suffix}'


def is_temp_id(item_id):
    return str(item_id).startswith(TEMP_ID_PREFIX)


def _money(value):
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _customization_key(customization):
    if customization is None:
        return None
    return json.dumps(customization, sort_keys=True)


def _line_key(item):
    return (
        item['product_id'],
        item.get('variant_id'),
        _customization_key(item.get('customization')),
    )


def _from_server(item):
    product = item.get('product') or {}
    variant = item.get('variant') or {}
    return {
        'id': str(item['id']),
        'product_id': item['product_id'],
        'variant_id': item.get('variant_id'),
        'quantity': item['quantity'],
        'unit_price': item['unit_price'],
        'customization': item.get('customization'),
        'product_name': product.get('name'),
        'variant_name': variant.get('name'),
        'added_at': item.get('added_at'),
    }


def _sync_payload(item):
    return {
        'product_id': item['product_id'],
        'variant_id': item.get('variant_id'),
        'quantity': item['quantity'],
        'unit_price': item['unit_price'],
        'customization': item.get('customization'),
        'added_at': item.get('added_at'),
    }


class CartSession:
    """Local cart mirror with queued, debounced server sync.

    ``debounce_seconds`` of 0 or None disables the timer; queued writes are
    then only sent by an explicit :meth:`flush`.
    """

    def __init__(self, storage, debounce_seconds=0.5, vat_rate=VAT_RATE):
        self.storage = storage
        self.debounce_seconds = debounce_seconds
        self.vat_rate = Decimal(str(vat_rate))

        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._timer = None
        self._api = None
        self._queue = []

        self._items = storage.load_items()
        known = {item['id'] for item in self._items}
        selected = {i for i in storage.load_selection() if i in known}
        if not selected and self._items:
            selected = set(known)
        self._selected = selected

    # -- state -----------------------------------------------------------

    @property
    def items(self):
        with self._lock:
            return copy.deepcopy(self._items)

    @property
    def selected_ids(self):
        with self._lock:
            return set(self._selected)

    @property
    def is_guest(self):
        return self._api is None

    @property
    def pending_operations(self):
        with self._lock:
            return len(self._queue)

    def get_item(self, item_id):
        with self._lock:
            item = self._find(item_id)
            return copy.deepcopy(item) if item else None

    def _find(self, item_id):
        for item in self._items:
            if item['id'] == item_id:
                return item
        return None

    def _persist(self):
        self.storage.save_items(self._items)
        self.storage.save_selection(self._selected)

    def _snapshot(self):
        return copy.deepcopy(self._items), set(self._selected)

    # -- mutations -------------------------------------------------------

    def add_item(self, product_id, unit_price, quantity=1, variant_id=None,
                 customization=None, **details):
        """Add a line or merge into a matching one; returns the line id.

        Lines match on product, variant and customization.
        ``details`` (product name, variant name, ...) are stored on a new
        line for display only.
        """
        if quantity < 1:
            raise ValueError('Quantity must be at least 1')

        with self._lock:
            snapshot = self._snapshot()
            key = (product_id, variant_id, _customization_key(customization))
            existing = next(
                (i for i in self._items if _line_key(i) == key), None)

            if existing is not None:
                existing['quantity'] += quantity
                item_id = existing['id']
                if self._api is not None:
                    self._queue_quantity(
                        item_id, existing['quantity'], snapshot)
            else:
                item_id = generate_temp_id()
                item = dict(details)
                item.update({
                    'id': item_id,
                    'product_id': product_id,
                    'variant_id': variant_id,
                    'quantity': quantity,
                    'unit_price': unit_price,
                    'customization': customization,
                    'added_at': datetime.utcnow().isoformat(),
                })
                self._items.append(item)
                if self._api is not None:
                    self._queue.append({
                        'op': 'add',
                        'item_id': item_id,
                        'payload': {
                            'product_id': product_id,
                            'variant_id': variant_id,
                            'quantity': quantity,
                            'unit_price': unit_price,
                            'customization': customization,
                        },
                    })

            self._selected.add(item_id)
            self._persist()
        self._schedule_flush()
        return item_id

    def update_quantity(self, item_id, quantity):
        if quantity < 1:
            return self.remove_item(item_id)

        with self._lock:
            item = self._find(item_id)
            if item is None:
                return False
            snapshot = self._snapshot()
            item['quantity'] = quantity
            if self._api is not None:
                self._queue_quantity(item_id, quantity, snapshot)
            self._persist()
        self._schedule_flush()
        return True

    def remove_item(self, item_id):
        with self._lock:
            item = self._find(item_id)
            if item is None:
                return False
            snapshot = self._snapshot()
            self._items.remove(item)
            self._selected.discard(item_id)

            if self._api is not None:
                unsent_add = any(
                    op['op'] == 'add' and op['item_id'] == item_id
                    for op in self._queue)
                # Later writes to this line are superseded by the removal
                self._drop_ops_for(item_id)
                if not unsent_add:
                    self._queue.append({
                        'op': 'remove',
                        'item_id': item_id,
                        'snapshot': snapshot,
                    })
            self._persist()
        self._schedule_flush()
        return True

    def clear(self):
        with self._lock:
            self._items = []
            self._selected = set()
            if self._api is not None:
                self._queue = [{'op': 'clear', 'item_id': None}]
            self._persist()
        self._schedule_flush()

    def clear_selected(self):
        with self._lock:
            ids = [i['id'] for i in self._items if i['id'] in self._selected]
            for item_id in ids:
                self.remove_item(item_id)
        return len(ids)

    def _queue_quantity(self, item_id, quantity, snapshot):
        for op in self._queue:
            if op['item_id'] == item_id and op['op'] == 'add':
                op['payload']['quantity'] = quantity
                return
        for op in self._queue:
            if op['item_id'] == item_id and op['op'] == 'update':
                op['quantity'] = quantity
                return
        self._queue.append({
            'op': 'update',
            'item_id': item_id,
            'quantity': quantity,
            'snapshot': snapshot,
        })

    def _drop_ops_for(self, item_id):
        self._queue = [op for op in self._queue if op['item_id'] != item_id]

    # -- selection -------------------------------------------------------

    def select_item(self, item_id):
        with self._lock:
            if self._find(item_id) is None:
                return
            self._selected.add(item_id)
            self.storage.save_selection(self._selected)

    def deselect_item(self, item_id):
        with self._lock:
            self._selected.discard(item_id)
            self.storage.save_selection(self._selected)

    def toggle_item(self, item_id):
        with self._lock:
            if item_id in self._selected:
                self.deselect_item(item_id)
            else:
                self.select_item(item_id)

    def select_all(self):
        with self._lock:
            self._selected = {item['id'] for item in self._items}
            self.storage.save_selection(self._selected)

    def deselect_all(self):
        with self._lock:
            self._selected = set()
            self.storage.save_selection(self._selected)

    # -- derived values --------------------------------------------------

    def _totals(self, items):
        count = sum(item['quantity'] for item in items)
        subtotal = sum(
            (_money(item['unit_price']) * item['quantity'] for item in items),
            Decimal('0.00'),
        )
        subtotal = subtotal.quantize(TWO_PLACES)
        vat = (subtotal * self.vat_rate).quantize(
            TWO_PLACES, rounding=ROUND_HALF_UP)
        return count, subtotal, vat, subtotal + vat

    @property
    def item_count(self):
        with self._lock:
            return self._totals(self._items)[0]

    @property
    def subtotal(self):
        with self._lock:
            return self._totals(self._items)[1]

    @property
    def vat(self):
        with self._lock:
            return self._totals(self._items)[2]

    @property
    def total(self):
        with self._lock:
            return self._totals(self._items)[3]

    @property
    def selected_items(self):
        with self._lock:
            return [copy.deepcopy(i) for i in self._items
                    if i['id'] in self._selected]

    def selection_totals(self):
        """``{'count', 'subtotal', 'vat', 'total'}`` of the selected lines."""
        count, subtotal, vat, total = self._totals(self.selected_items)
        return {
            'count': count,
            'subtotal': subtotal,
            'vat': vat,
            'total': total,
        }

    @property
    def is_all_selected(self):
        with self._lock:
            return bool(self._items) and len(self._selected) == len(
                self._items)

    @property
    def is_indeterminate(self):
        with self._lock:
            return 0 < len(self._selected) < len(self._items)

    # -- server sync -----------------------------------------------------

    def login(self, api):
        """Attach ``api`` and reconcile with the server cart.

        A non-empty local cart is merged into the server's; otherwise the
        server cart is loaded. Returns False when the server could not be
        reached, in which case the local items are kept.
        """
        with self._lock:
            self._cancel_timer()
            self._api = api
            self._queue = []
            local_items = copy.deepcopy(self._items)
            local_selected = set(self._selected)

        try:
            if local_items:
                server_items = api.sync(
                    [_sync_payload(i) for i in local_items])
            else:
                server_items = api.get_cart()
        except CartApiError as e:
            logger.error(f"Failed to sync cart with server: {e}")
            return False

        selected_keys = {
            _line_key(i) for i in local_items if i['id'] in local_selected
        }
        with self._lock:
            self._replace_with_server(
                server_items, local_selected, selected_keys)
        logger.info(
            "Cart synced with server: %s local, %s server item(s)",
            len(local_items),
            len(server_items),
        )
        return True

    def logout(self):
        with self._lock:
            self._cancel_timer()
            self._api = None
            self._queue = []

    def refresh(self):
        """Reload the server cart, discarding queued writes."""
        api = self._api
        if api is None:
            return False
        try:
            server_items = api.get_cart()
        except CartApiError as e:
            logger.error(f"Failed to refresh cart: {e}")
            return False

        with self._lock:
            selected = set(self._selected)
            selected_keys = {
                _line_key(i) for i in self._items if i['id'] in selected
            }
            self._queue = []
            self._replace_with_server(server_items, selected, selected_keys)
        return True

    def _replace_with_server(self, server_items, selected_ids, selected_keys):
        self._items = [_from_server(i) for i in server_items]
        self._selected = {
            i['id'] for i in self._items
            if i['id'] in selected_ids or _line_key(i) in selected_keys
        }
        if not self._selected and self._items:
            self._selected = {i['id'] for i in self._items}
        self._persist()

    def _schedule_flush(self):
        if self._api is None or not self.debounce_seconds:
            return
        with self._lock:
            self._cancel_timer()
            self._timer = threading.Timer(self.debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self):
        """Cancel a pending flush and wait for one already running."""
        with self._lock:
            timer = self._timer
            self._cancel_timer()
        if (timer is not None and timer.is_alive()
                and timer is not threading.current_thread()):
            timer.join()

    def flush(self):
        """Send queued writes in order; returns how many were attempted."""
        sent = 0
        with self._flush_lock:
            while True:
                with self._lock:
                    if self._api is None or not self._queue:
                        return sent
                    api = self._api
                    op = self._queue.pop(0)
                self._send(api, op)
                sent += 1

    def _send(self, api, op):
        kind = op['op']
        item_id = op['item_id']

        if kind == 'add':
            try:
                server_item = api.add_item(**op['payload'])
            except CartApiError as e:
                # The optimistic line stays; it is retried by the next login
                logger.error(f"Failed to add item to server cart: {e}")
                with self._lock:
                    self._drop_ops_for(item_id)
                return
            with self._lock:
                self._reconcile(item_id, server_item)
            return

        if kind == 'clear':
            try:
                api.clear()
            except CartApiError as e:
                logger.error(f"Failed to clear server cart: {e}")
            return

        if is_temp_id(item_id):
            # Its add never reached the server
            return

        try:
            if kind == 'update':
                api.update_item(item_id, op['quantity'])
            else:
                api.remove_item(item_id)
        except CartApiError as e:
            self._handle_failure(op, e)

    def _handle_failure(self, op, error):
        logger.error(
            f"Failed to {op['op']} cart item {op['item_id']}: {error}")
        if error.status_code == 404:
            self.refresh()
            return

        with self._lock:
            items, selected = op['snapshot']
            self._restore_line(op['item_id'], items, selected)
            self._drop_ops_for(op['item_id'])
            self._persist()

    def _restore_line(self, item_id, snapshot_items, snapshot_selected):
        """Put one line back as the snapshot had it; other lines are kept."""
        position, previous = next(
            ((n, i) for n, i in enumerate(snapshot_items)
             if i['id'] == item_id),
            (None, None))
        current = self._find(item_id)

        if previous is None:
            if current is not None:
                self._items.remove(current)
            self._selected.discard(item_id)
            return

        if current is not None:
            current.update(copy.deepcopy(previous))
        else:
            self._items.insert(
                min(position, len(self._items)), copy.deepcopy(previous))
        if item_id in snapshot_selected:
            self._selected.add(item_id)
        else:
            self._selected.discard(item_id)

    def _reconcile(self, temp_id, server_item):
        if not server_item:
            return
        new_id = str(server_item['id'])

        item = self._find(temp_id)
        duplicate = self._find(new_id)
        if item is not None and duplicate is not None:
            # The server merged the add into a line we already hold
            duplicate['quantity'] = server_item['quantity']
            self._items.remove(item)
        elif item is not None:
            item['id'] = new_id

        if temp_id in self._selected:
            self._selected.discard(temp_id)
            self._selected.add(new_id)

        for op in self._queue:
            if op['item_id'] == temp_id:
                op['item_id'] = new_id
            snapshot = op.get('snapshot')
            if snapshot:
                for snap_item in snapshot[0]:
                    if snap_item['id'] == temp_id:
                        snap_item['id'] = new_id
                if temp_id in snapshot[1]:
                    snapshot[1].discard(temp_id)
                    snapshot[1].add(new_id)

        self._persist()
        logger.info("Cart item %s is now %s", temp_id, new_id)
