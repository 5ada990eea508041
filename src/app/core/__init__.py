"""Core 패키지 초기화 (경량화)

core.config 는 import 시점에 환경 변수를 읽으므로 여기서 노출하지 않습니다.
"""
from .container import container
from .responses import (
    APIResponse, success_response, error_response,
    BusinessException, AuthenticationException,
    AuthorizationException, NotFoundException,
)

__all__ = [
    'container',
    'APIResponse',
    'success_response',
    'error_response',
    'BusinessException',
    'AuthenticationException',
    'AuthorizationException',
    'NotFoundException',
]
