from fastapi import Request

from updown.context import AppContext
from updown.gateway import Database


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def get_gateway(request: Request) -> Database:
    return request.app.state.ctx.db
