# app/crud/base.py
import functools
import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app.errors import ServiceUnavailable

logger = logging.getLogger(__name__)

UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


def store_call(func):
    """드라이버/커넥션 오류와 타임아웃을 ServiceUnavailable 로 변환. self.db 를 가진 메서드용."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except UNAVAILABLE_ERRORS as e:
            self.db.rollback()
            logger.exception("Store call %s.%s failed: %s", type(self).__name__, func.__name__, e)
            raise ServiceUnavailable() from e

    return wrapper
