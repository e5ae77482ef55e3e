"""HTTP API for the capture engine."""

from typing import Any, Dict, List, Optional

from aiohttp import web
from loguru import logger

from .errors import (
    AhaError,
    CaptureError,
    EntryNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from .handoff import CaptureTrigger
from .models import CaptureDraft, EntryStatus, Source
from .threads import SortOrder


def create_api_app(engine) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[error_middleware])
    app['engine'] = engine

    app.router.add_post('/pending-capture', handle_put_pending)
    app.router.add_get('/pending-capture', handle_take_pending)
    app.router.add_get('/entries', handle_list_entries)
    app.router.add_post('/entries', handle_capture)
    app.router.add_patch('/entries/{id}', handle_edit)
    app.router.add_post('/entries/{id}/status', handle_set_status)
    app.router.add_delete('/entries/{id}', handle_delete)
    app.router.add_post('/trash/empty', handle_empty_trash)
    app.router.add_get('/threads/{id}', handle_thread)
    app.router.add_post('/sync', handle_sync)
    app.router.add_get('/suggestions', handle_suggestions)
    app.router.add_get('/status', handle_status)

    return app


def error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({'error': {'code': code, 'message': message}}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except EntryNotFoundError as e:
        return error_response('not_found', str(e), 404)
    except ValidationError as e:
        return error_response('invalid_request', str(e), 400)
    except InvalidTransitionError as e:
        return error_response('invalid_transition', str(e), 409)
    except CaptureError as e:
        return error_response('capture_failed', str(e), 502)
    except AhaError as e:
        logger.error(f"Request failed: {e}")
        return error_response('engine_error', str(e), 500)


async def read_json(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field_name=key)
    return value


def parse_statuses(raw: str) -> List[EntryStatus]:
    statuses = []
    for value in raw.split(','):
        status = EntryStatus.parse(value.strip())
        if status is EntryStatus.UNKNOWN:
            raise ValidationError(f"Unknown status: {value}")
        statuses.append(status)
    return statuses


def parse_order(raw: str, default: SortOrder) -> SortOrder:
    if not raw:
        return default
    try:
        return SortOrder(raw)
    except ValueError:
        raise ValidationError("order must be asc or desc")


async def handle_put_pending(request: web.Request) -> web.Response:
    """Store a capture initiated elsewhere (page selection, context menu)."""
    engine = request.app['engine']
    data = await read_json(request)
    for key in ('text', 'url', 'mode'):
        optional_str(data, key)
    trigger = CaptureTrigger.from_dict(data)
    await engine.pending.put(trigger)
    return web.json_response({'status': 'pending'}, status=202)


async def handle_take_pending(request: web.Request) -> web.Response:
    engine = request.app['engine']
    trigger = await engine.pending.take()
    return web.json_response({'pending': trigger.to_dict() if trigger else None})


async def handle_list_entries(request: web.Request) -> web.Response:
    engine = request.app['engine']
    statuses = parse_statuses(request.query.get('status', 'active'))
    query = request.query.get('q')
    order = parse_order(request.query.get('order', ''), SortOrder.DESC)

    view = await engine.context_list(statuses=statuses, query=query, order=order)
    return web.json_response({'count': len(view), **view.to_dict()})


async def handle_capture(request: web.Request) -> web.Response:
    engine = request.app['engine']
    data = await read_json(request)

    label = optional_str(data, 'source_label')
    url = optional_str(data, 'url')
    source = None
    if label:
        source = Source.custom(label)
    elif url:
        source = Source.from_url(url, full=bool(data.get('full_url')))

    draft = CaptureDraft(
        content=optional_str(data, 'content') or '',
        group=optional_str(data, 'group'),
        category=optional_str(data, 'category'),
        note=optional_str(data, 'note'),
        source=source,
        origin=optional_str(data, 'origin') or 'popup_manual'
    )
    entry = await engine.capture(draft, reply_to=optional_str(data, 'reply_to'))
    return web.json_response({'entry': entry.to_dict()}, status=201)


async def handle_edit(request: web.Request) -> web.Response:
    engine = request.app['engine']
    data = await read_json(request)
    kwargs: Dict[str, Any] = {}
    if 'content' in data:
        kwargs['content'] = optional_str(data, 'content') or ''
    if 'note' in data:
        kwargs['note'] = optional_str(data, 'note')
    entry = await engine.lifecycle.edit(request.match_info['id'], **kwargs)
    return web.json_response({'entry': entry.to_dict()})


async def handle_set_status(request: web.Request) -> web.Response:
    engine = request.app['engine']
    data = await read_json(request)
    status = EntryStatus.parse(data.get('status'))
    if status is EntryStatus.UNKNOWN or not data.get('status'):
        raise ValidationError("status must be active, done or trash")
    entry = await engine.lifecycle.set_status(request.match_info['id'], status)
    return web.json_response({'entry': entry.to_dict()})


async def handle_delete(request: web.Request) -> web.Response:
    engine = request.app['engine']
    entry = await engine.lifecycle.delete_permanently(request.match_info['id'])
    return web.json_response({'deleted': entry.id})


async def handle_empty_trash(request: web.Request) -> web.Response:
    engine = request.app['engine']
    removed = await engine.lifecycle.empty_trash()
    return web.json_response({'deleted': [e.id for e in removed]})


async def handle_thread(request: web.Request) -> web.Response:
    engine = request.app['engine']
    order = parse_order(request.query.get('order', ''), SortOrder.ASC)
    view = await engine.thread(request.match_info['id'], query=request.query.get('q'), order=order)
    return web.json_response({
        'root': view['root'].to_dict(),
        'replies': [e.to_dict() for e in view['replies']],
        'grouped': view['grouped'].to_dict(),
        'order': view['order'].value
    })


async def handle_sync(request: web.Request) -> web.Response:
    engine = request.app['engine']
    result = await engine.sync.merge()
    return web.json_response(result.to_dict(), status=200 if result.ok else 503)


async def handle_suggestions(request: web.Request) -> web.Response:
    engine = request.app['engine']
    return web.json_response(await engine.store.suggestions())


async def handle_status(request: web.Request) -> web.Response:
    engine = request.app['engine']
    return web.json_response(await engine.get_status())
