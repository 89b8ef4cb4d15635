from __future__ import annotations

from fastapi import Request

from ..engine import BucketAnalytics


def get_analytics(request: Request) -> BucketAnalytics:
    return request.app.state.analytics
