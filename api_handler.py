"""
HTTP API for the subdomain registry
aiohttp application exposing register / update / delete / list, with CORS for
the static front end and JSON bodies for every response, errors included.
"""

import json
import logging
import time
from functools import partial
from typing import Any, Dict, Optional

from aiohttp import web
from aiohttp.web_request import Request
from aiohttp.web_response import Response

from localization import detect_language
from message_utils import create_error_response, create_message_response, create_success_response
from registry_config import RegistryConfig
from registry_errors import InvalidInput, NotConfigured, RegistryError
from services.registration_orchestrator import RegistrationWorkflow

logger = logging.getLogger(__name__)

logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, PUT, DELETE, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Accept-Language',
}

AVAILABLE_ENDPOINTS = {
    'GET /': 'Health check',
    'GET /health': 'Health check with configuration status',
    'GET /domains?email=xxx': 'Get domains by email',
    'POST /domain': 'Create new domain',
    'PUT /domain': 'Update domain nameservers',
    'DELETE /domain': 'Delete domain',
}

CONFIG_KEY = web.AppKey('config', RegistryConfig)
WORKFLOW_KEY = web.AppKey('workflow', RegistrationWorkflow)

json_response = partial(web.json_response, dumps=partial(json.dumps, ensure_ascii=False))


def _lang(request: Request) -> str:
    return detect_language(request.headers.get('Accept-Language'))


def _get_workflow(request: Request) -> RegistrationWorkflow:
    """Workflow for API routes; refuses to run with incomplete configuration"""
    config = request.app[CONFIG_KEY]
    missing = config.missing_settings()
    if missing:
        raise NotConfigured("missing settings", missing=missing)
    return request.app[WORKFLOW_KEY]


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInput('body', 'Request body is not valid JSON')
    if not isinstance(payload, dict):
        raise InvalidInput('body', 'Request body must be a JSON object')
    return payload


# ====================================================================
# MIDDLEWARE
# ====================================================================

@web.middleware
async def cors_middleware(request: Request, handler) -> Response:
    response = await handler(request)
    response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request: Request, handler) -> Response:
    """Turn every failure into a JSON body with a stable code"""
    lang = _lang(request)
    try:
        return await handler(request)
    except RegistryError as e:
        level = logging.WARNING if e.http_status < 500 else logging.ERROR
        logger.log(level, f"{request.method} {request.path} → {e.http_status} {e.code}: {e.reason}")
        return json_response(create_error_response(e, lang), status=e.http_status)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        return json_response(
            create_message_response('not_found', lang, available_endpoints=AVAILABLE_ENDPOINTS),
            status=404
        )
    except web.HTTPException as e:
        return json_response({'success': False, 'code': 'http_error', 'message': e.reason}, status=e.status)
    except Exception:
        logger.exception(f"❌ Unhandled error on {request.method} {request.path}")
        return json_response(create_message_response('internal_error', lang), status=500)


# ====================================================================
# HANDLERS
# ====================================================================

async def health_handler(request: Request) -> Response:
    """Liveness plus a set/missing report of required settings"""
    config = request.app[CONFIG_KEY]
    return json_response({
        'status': 'ok' if config.is_configured else 'degraded',
        'service': 'free_domain_registry',
        'timestamp': time.time(),
        'ledger_backend': config.ledger_backend,
        'env_check': config.env_check(),
    })


async def options_handler(request: Request) -> Response:
    """CORS preflight"""
    return web.Response(status=204)


async def create_domain_handler(request: Request) -> Response:
    workflow = _get_workflow(request)
    payload = await _read_json(request)
    registration = await workflow.create(payload)
    return json_response(
        create_success_response('registered', _lang(request), domain=registration.to_dict()),
        status=201
    )


async def update_domain_handler(request: Request) -> Response:
    workflow = _get_workflow(request)
    payload = await _read_json(request)
    registration = await workflow.update(payload)
    return json_response(create_success_response('updated', _lang(request), domain=registration.to_dict()))


async def delete_domain_handler(request: Request) -> Response:
    workflow = _get_workflow(request)
    payload = await _read_json(request)
    domain = await workflow.delete(payload)
    return json_response(create_success_response('deleted', _lang(request), domain=domain))


async def list_domains_handler(request: Request) -> Response:
    workflow = _get_workflow(request)
    email = request.query.get('email', '').strip()
    if not email:
        return json_response(create_message_response('email_required', _lang(request), field='email'), status=400)
    registrations = await workflow.list_by_email(email)
    return json_response(create_success_response(domains=[r.to_dict() for r in registrations]))


# ====================================================================
# APPLICATION
# ====================================================================

def create_app(config: RegistryConfig, workflow: RegistrationWorkflow) -> web.Application:
    """Build the aiohttp application around an already-wired workflow"""
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[CONFIG_KEY] = config
    app[WORKFLOW_KEY] = workflow

    app.router.add_get('/', health_handler)
    app.router.add_get('/health', health_handler)

    app.router.add_post('/domain', create_domain_handler)
    app.router.add_put('/domain', update_domain_handler)
    app.router.add_delete('/domain', delete_domain_handler)
    app.router.add_get('/domains', list_domains_handler)

    app.router.add_route('OPTIONS', '/{tail:.*}', options_handler)

    async def _close_adapters(app: web.Application) -> None:
        await app[WORKFLOW_KEY].ledger.close()

    app.on_cleanup.append(_close_adapters)
    return app


async def start_api_server(app: web.Application, host: str = '0.0.0.0', port: int = 5000) -> web.AppRunner:
    """Start the aiohttp server in the running event loop"""
    try:
        runner = web.AppRunner(app)
        await runner.setup()

        site = web.TCPSite(runner, host, port)
        await site.start()

        logger.info(f"✅ Registry API started on http://{host}:{port}")
        logger.info("🔗 Health check endpoint: /, /health")
        return runner

    except Exception as e:
        logger.error(f"❌ Failed to start registry API: {e}")
        raise


async def stop_api_server(runner: Optional[web.AppRunner]) -> None:
    """Stop the server and release adapter resources"""
    if runner:
        await runner.cleanup()
    logger.info("✅ Registry API stopped")
