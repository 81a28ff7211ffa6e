import asyncio
from time import time
from typing import Any, Dict, Optional, Tuple

import httpx
import jwt
import mmh3
import orjson
from fastapi import Request
from loguru import logger

from app.app_config import get_app_environ_config


# Simple in-process LRU with TTL (size-bound + time-bound)
_LOCAL_POS: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_LOCAL_NEG: Dict[str, float] = {}
_LOCAL_LCK: Dict[str, asyncio.Lock] = {}
_MAX_LOCAL_SIZE = 1000
_MAX_POS_TTL = 300  # seconds
_MAX_NEG_TTL = 45   # seconds

_FORWARDED_HEADERS = (
    'user-agent',
    'x-forwarded-for',
    'x-real-ip',
    'x-request-id',
    'accept-language',
)


def _trim_local_cache():
    if len(_LOCAL_POS) <= _MAX_LOCAL_SIZE:
        return
    # Drop oldest by expire_at
    for k, _ in sorted(_LOCAL_POS.items(), key=lambda kv: kv[1][0])[: len(_LOCAL_POS) - _MAX_LOCAL_SIZE]:
        _LOCAL_POS.pop(k, None)
        _LOCAL_LCK.pop(k, None)


def clear_token_cache():
    _LOCAL_POS.clear()
    _LOCAL_NEG.clear()
    _LOCAL_LCK.clear()


def _decode_auth_header(auth_header: str) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    try:
        data = orjson.loads(auth_header)
        token = data.get('token')
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})

        # Keep only user_id, username, level
        payload['user_id'] = payload.pop('userId')
        pos_exp = int(time()) + _MAX_POS_TTL
        payload['exp'] = min(payload.pop('exp', pos_exp), pos_exp)
        for claim in ('iat', 'gver', 'cver'):
            payload.pop(claim, None)
    except Exception:
        logger.debug('invalid x-app-auth json')
        return None, None

    return token, payload


async def _call_core_api(base_url: str, auth_header: str, request: Request) -> bool:
    url = f"{base_url.rstrip('/')}/u/user/verify/token"

    timeout = httpx.Timeout(5, connect=2, read=5)
    headers = {'x-app-auth': auth_header}
    for header in _FORWARDED_HEADERS:
        value = request.headers.get(header)
        if value:
            headers[header] = value
    logger.debug('forward headers keys={}', list(headers.keys()))

    for attempt in (1, 2):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                logger.debug('calling core-api attempt={} url={}', attempt, url)
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            if attempt == 1:
                await asyncio.sleep(0.05)
                continue
            logger.warning('call core-api failed: {}', e)
            return False

        if resp.status_code != 200:
            logger.debug('core-api response status={} text={}', resp.status_code, resp.text)
            return False

        body = resp.json()
        logger.debug('core-api response body={}', body)
        return isinstance(body, dict) and body.get('rc') == 'OK' and body.get('result') == 'valid'

    return False


async def verify_token(request: Request) -> Optional[Dict[str, Any]]:
    """Resolve the caller identity from the x-app-auth header.

    Returns the public token payload (user_id, username, level, exp) or None
    when the header is missing, malformed or rejected by the auth service.
    """
    logger.debug('enter path={} method={}', request.url.path, request.method)
    auth_header = request.headers.get('x-app-auth')
    if not auth_header:
        logger.debug('missing x-app-auth header')
        return None

    token, payload = _decode_auth_header(auth_header)
    if not token or not payload or not payload.get('user_id'):
        logger.debug('missing user or token in header')
        return None

    user_id = payload['user_id']
    token_hash = format(mmh3.hash128(token), '032x')
    neg_key = f'vtneg:{token_hash}'
    pos_key = f'vtpos:{token_hash}:{user_id}'

    now = time()
    exp_neg = _LOCAL_NEG.get(neg_key)
    if exp_neg and exp_neg > now:
        logger.debug('neg cache local hit: {}', token_hash)
        return None

    cached = _LOCAL_POS.get(pos_key)
    if cached and cached[0] > now:
        logger.debug('pos cache local hit: {}:{}', token_hash, user_id)
        return cached[1]

    cfg = get_app_environ_config()

    # Single-flight lock per token
    lock = _LOCAL_LCK.setdefault(pos_key, asyncio.Lock())
    async with lock:
        # Recheck caches after acquiring the lock
        now = time()
        exp_neg = _LOCAL_NEG.get(neg_key)
        if exp_neg and exp_neg > now:
            return None
        cached = _LOCAL_POS.get(pos_key)
        if cached and cached[0] > now:
            return cached[1]

        if cfg.CORE_API_URL:
            ok = await _call_core_api(cfg.CORE_API_URL, auth_header, request)
        elif cfg.AUTH_TRUST_TOKEN_PAYLOAD:
            logger.debug('CORE_API_URL not configured, trusting token payload')
            ok = True
        else:
            logger.warning('CORE_API_URL not configured')
            ok = False

        if not ok:
            _LOCAL_NEG[neg_key] = time() + _MAX_NEG_TTL
            logger.debug('write neg cache: {} ttl={}', token_hash, _MAX_NEG_TTL)
            return None

        ttl = max(1, min(_MAX_POS_TTL, payload['exp'] - int(time())))
        _LOCAL_POS[pos_key] = (time() + ttl, payload)
        _trim_local_cache()
        logger.debug('write pos cache: {}:{} ttl={}', token_hash, user_id, ttl)

        return payload
