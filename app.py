from flask import Flask, jsonify, request
from flask_cors import CORS
import hmac
import os
from urllib.parse import urlparse
from dotenv import load_dotenv
from functools import wraps
from werkzeug.middleware.proxy_fix import ProxyFix

from catalog import load_catalog
from order_intake import (
    ORDER_STATUSES,
    OrderErrorKind,
    OrderIntakeError,
    build_order_record,
    short_order_id,
    submit_order,
    validate_order,
)
from order_store import FirestoreOrderStore, get_firestore_client
from rate_limit import (
    DEFAULT_MAX_REQUESTS,
    DEFAULT_WINDOW_SECONDS,
    FirestoreRateLimiter,
    InMemoryRateLimiter,
)
from admin_reports import group_customers, normalize_order, sales_analytics, sort_newest_first
from invoices import render_invoice_html
from whatsapp import build_order_message, build_whatsapp_url, whatsapp_qr_data_uri

load_dotenv()


def _env_flag(name: str) -> bool:
    return os.getenv(name, '').strip().lower() in ('1', 'true', 'yes')


def _trusted_proxy_hops() -> int:
    try:
        return max(0, int(os.getenv('TRUSTED_PROXY_HOPS', '0')))
    except (TypeError, ValueError):
        return 0


# Analytics periods longer than this are refused.
MAX_PERIOD_DAYS = 36500

app = Flask(__name__)

# Only X-Forwarded-* entries appended by our own proxies are honoured; with
# no trusted hops the rate limit keys on the socket address.
TRUSTED_PROXY_HOPS = _trusted_proxy_hops()
if TRUSTED_PROXY_HOPS:
    app.wsgi_app = ProxyFix(
        app.wsgi_app,
        x_for=TRUSTED_PROXY_HOPS,
        x_proto=TRUSTED_PROXY_HOPS,
        x_host=TRUSTED_PROXY_HOPS,
    )

app.config.update(
    ADMIN_SECRET=os.getenv('ADMIN_SECRET') or None,
    API_SECRET=os.getenv('API_SECRET') or None,
    ALLOWED_ORIGINS=[o.strip().rstrip('/') for o in os.getenv('ALLOWED_ORIGINS', '').split(',') if o.strip()],
    LOCAL_DEV=_env_flag('LOCAL_DEV') or _env_flag('FLASK_DEBUG'),
    WHATSAPP_NUMBER=os.getenv('WHATSAPP_NUMBER', '49170123456'),
    STORE_NAME=os.getenv('STORE_NAME', 'مواسم الخير'),
    CATALOG_PATH=os.getenv('CATALOG_PATH') or None,
    RATE_LIMIT_MAX=int(os.getenv('RATE_LIMIT_MAX', DEFAULT_MAX_REQUESTS)),
    RATE_LIMIT_WINDOW_SECONDS=float(os.getenv('RATE_LIMIT_WINDOW_SECONDS', DEFAULT_WINDOW_SECONDS)),
    RATE_LIMIT_BACKEND=os.getenv('RATE_LIMIT_BACKEND', 'memory').lower(),
    ADMIN_ORDERS_LIMIT=100,
    # collaborators, created on first use; tests put fakes here
    CATALOG=None,
    RATE_LIMITER=None,
    ORDER_STORE=None,
)

CORS(
    app,
    resources={r"/api/*": {"origins": app.config['ALLOWED_ORIGINS'] or []}},
    allow_headers=['Content-Type', 'x-api-secret', 'x-admin-secret'],
)

ERROR_STATUS = {
    OrderErrorKind.RATE_LIMITED: 429,
    OrderErrorKind.INVALID_INPUT: 422,
    OrderErrorKind.UNKNOWN_PRODUCT: 422,
    OrderErrorKind.STORAGE_FAILURE: 500,
    OrderErrorKind.FORBIDDEN: 403,
}


# ==================== COLLABORATORS ====================

def get_catalog():
    if app.config['CATALOG'] is None:
        app.config['CATALOG'] = load_catalog(app.config['CATALOG_PATH'])
    return app.config['CATALOG']


def get_rate_limiter():
    if app.config['RATE_LIMITER'] is None:
        max_requests = app.config['RATE_LIMIT_MAX']
        window = app.config['RATE_LIMIT_WINDOW_SECONDS']
        if app.config['RATE_LIMIT_BACKEND'] == 'firestore':
            app.config['RATE_LIMITER'] = FirestoreRateLimiter(
                get_firestore_client(), max_requests=max_requests, window_seconds=window
            )
        else:
            app.config['RATE_LIMITER'] = InMemoryRateLimiter(max_requests, window)
    return app.config['RATE_LIMITER']


def get_order_store():
    if app.config['ORDER_STORE'] is None:
        app.config['ORDER_STORE'] = FirestoreOrderStore()
    return app.config['ORDER_STORE']


# ==================== REQUEST HELPERS ====================

def get_client_ip() -> str:
    return request.remote_addr or 'unknown'


def secrets_match(expected, provided) -> bool:
    if not expected or not isinstance(provided, str):
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def origin_allowed() -> bool:
    """Browsers always send Origin on cross-site POSTs; a request without one is not cross-site."""
    if app.config['LOCAL_DEV']:
        return True
    origin = request.headers.get('Origin')
    if not origin:
        return True
    origin = origin.rstrip('/')
    if origin in app.config['ALLOWED_ORIGINS']:
        return True
    return urlparse(origin).netloc == request.host


def error_response(err: OrderIntakeError):
    return jsonify(err.to_payload()), ERROR_STATUS[err.kind]


def require_admin(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not secrets_match(app.config['ADMIN_SECRET'], request.headers.get('x-admin-secret')):
            return jsonify({'error': 'Forbidden'}), 403
        return f(*args, **kwargs)
    return decorated


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(404)
def not_found(e):
    return jsonify({'error': 'Not found'}), 404


# ==================== STOREFRONT APIs ====================

@app.route('/api/products', methods=['GET'])
def get_products():
    catalog = get_catalog()
    products = catalog.products(category=request.args.get('category'), query=request.args.get('q'))
    return jsonify({'products': products, 'categories': ['all', *catalog.categories()]})


@app.route('/api/order', methods=['POST'])
def create_order():
    """Validate, price and store a customer order."""
    if app.config['API_SECRET'] and not secrets_match(app.config['API_SECRET'], request.headers.get('x-api-secret')):
        return error_response(OrderIntakeError(OrderErrorKind.FORBIDDEN, 'Forbidden'))
    if not origin_allowed():
        print(f"[WARN] Rejected order from origin {request.headers.get('Origin')}")
        return error_response(OrderIntakeError(OrderErrorKind.FORBIDDEN, 'Forbidden'))

    body = request.get_json(silent=True)
    try:
        result = submit_order(
            body,
            ip=get_client_ip(),
            user_agent=request.headers.get('User-Agent', ''),
            catalog=get_catalog(),
            limiter=get_rate_limiter(),
            store=get_order_store(),
        )
    except OrderIntakeError as e:
        if e.kind == OrderErrorKind.RATE_LIMITED:
            print(f"[WARN] Rate limit hit for {get_client_ip()}")
        return error_response(e)

    return jsonify({'success': True, 'orderId': result['orderId'], 'total': result['total']})


@app.route('/api/whatsapp/link', methods=['POST'])
def whatsapp_link():
    """Build the WhatsApp deep link (and its QR code) for a submitted order."""
    data = request.get_json(silent=True) or {}
    order_id = data.get('orderId')
    if not order_id or not isinstance(order_id, str):
        return jsonify({'error': 'Invalid order ID'}), 422

    # separate counter from order submissions, same policy
    ip = get_client_ip()
    if not get_rate_limiter().check_and_increment(f'whatsapp:{ip}'):
        print(f"[WARN] WhatsApp link rate limit hit for {ip}")
        return error_response(OrderIntakeError(
            OrderErrorKind.RATE_LIMITED, 'Too many requests. Please try again later.'
        ))

    try:
        customer, items, total = validate_order(data, get_catalog())
    except OrderIntakeError as e:
        return error_response(e)

    customer = build_order_record(customer, items, total)['customer']
    message = build_order_message(app.config['STORE_NAME'], order_id.upper(), customer, items, total)
    url = build_whatsapp_url(app.config['WHATSAPP_NUMBER'], message)
    try:
        qr_code = whatsapp_qr_data_uri(url)
    except Exception as e:
        print(f"[WARN] Could not render WhatsApp QR code: {e}")
        qr_code = None

    return jsonify({'url': url, 'qrCode': qr_code})


# ==================== ADMIN APIs ====================

@app.route('/api/admin/orders', methods=['GET'])
@require_admin
def admin_orders():
    try:
        docs = get_order_store().list_orders(limit=app.config['ADMIN_ORDERS_LIMIT'])
    except Exception as e:
        print(f"[ERROR] Admin fetch error: {e}")
        return jsonify({'error': 'Failed to fetch orders'}), 500

    orders = sort_newest_first([normalize_order(d) for d in docs])
    return jsonify({'orders': orders})


@app.route('/api/admin/update-status', methods=['POST'])
@require_admin
def admin_update_status():
    data = request.get_json(silent=True) or {}
    order_id = data.get('orderId')
    status = data.get('status')

    if not order_id or not isinstance(order_id, str):
        return jsonify({'error': 'Invalid order ID'}), 422
    if status not in ORDER_STATUSES:
        return jsonify({'error': f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}"}), 422

    try:
        updated = get_order_store().update_status(order_id, status)
    except Exception as e:
        print(f"[ERROR] Status update error: {e}")
        return jsonify({'error': 'Failed to update order'}), 500

    if not updated:
        return jsonify({'error': 'Order not found'}), 404

    print(f"[INFO] Order #{short_order_id(order_id)} status set to {status}")
    return jsonify({'success': True})


@app.route('/api/admin/customers', methods=['GET'])
@require_admin
def admin_customers():
    try:
        docs = get_order_store().list_orders()
    except Exception as e:
        print(f"[ERROR] Customers fetch error: {e}")
        return jsonify({'error': 'Failed to fetch customers'}), 500

    return jsonify({'customers': group_customers([normalize_order(d) for d in docs])})


@app.route('/api/admin/analytics', methods=['GET'])
@require_admin
def admin_analytics():
    period = request.args.get('period', 'all')
    bucket = request.args.get('bucket', 'month')
    if bucket not in ('day', 'month', 'year'):
        return jsonify({'error': 'Invalid bucket'}), 422

    days = None
    if period != 'all':
        try:
            days = int(period)
        except ValueError:
            return jsonify({'error': 'Invalid period'}), 422
        if days <= 0 or days > MAX_PERIOD_DAYS:
            return jsonify({'error': 'Invalid period'}), 422

    try:
        docs = get_order_store().list_orders()
    except Exception as e:
        print(f"[ERROR] Analytics fetch error: {e}")
        return jsonify({'error': 'Failed to fetch orders'}), 500

    orders = [normalize_order(d) for d in docs]
    return jsonify(sales_analytics(orders, days=days, bucket=bucket))


@app.route('/api/admin/generate-invoice', methods=['POST'])
@require_admin
def admin_generate_invoice():
    data = request.get_json(silent=True) or {}
    order_id = data.get('orderId')
    if not order_id or not isinstance(order_id, str):
        return jsonify({'error': 'Invalid order ID'}), 422

    try:
        doc = get_order_store().get_order(order_id)
    except Exception as e:
        print(f"[ERROR] Invoice generation error: {e}")
        return jsonify({'error': 'Failed to generate invoice'}), 500

    if doc is None:
        return jsonify({'error': 'Order not found'}), 404

    html = render_invoice_html(normalize_order(doc), app.config['STORE_NAME'])
    return html, 200, {'Content-Type': 'text/html; charset=utf-8'}


# ==================== DIAGNOSTICS ====================

@app.route('/api/health', methods=['GET'])
def health():
    checks = {
        'ADMIN_SECRET': bool(app.config['ADMIN_SECRET']),
        'API_SECRET': bool(app.config['API_SECRET']),
        'FIREBASE_PROJECT_ID': bool(os.getenv('FIREBASE_PROJECT_ID')),
        'FIREBASE_CLIENT_EMAIL': bool(os.getenv('FIREBASE_CLIENT_EMAIL')),
        'FIREBASE_PRIVATE_KEY': bool(os.getenv('FIREBASE_PRIVATE_KEY')),
    }

    try:
        get_order_store().ping()
        database = 'connected'
    except Exception as e:
        print(f"[WARN] Health check could not reach the order store: {e}")
        database = 'unavailable'

    return jsonify({
        'checks': checks,
        'database': database,
        'products': len(get_catalog()),
    })


if __name__ == '__main__':
    print("Starting Flask server...")
    port = int(os.getenv('PORT', 5000))
    app.run(debug=app.config['LOCAL_DEV'], port=port)
