from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.schemas.quote import QuoteBusy, QuoteFailure

router = APIRouter()


@router.get('/price')
async def get_price(request: Request):
    service = request.app.state.quote_service
    result = await service.get_quote()

    if isinstance(result, QuoteBusy):
        return JSONResponse(status_code=503, content={'success': False, 'error': result.message})
    if isinstance(result, QuoteFailure):
        return JSONResponse(status_code=500, content={'success': False, 'error': result.message})

    return {
        'success': True,
        'price': result.price,
        'updated': result.updated_at,
        'method': result.method,
        'cached': result.cached,
    }


@router.get('/test')
def server_test(request: Request):
    settings = request.app.state.get_settings()
    return {
        'success': True,
        'message': 'server is running',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'port': settings.PORT,
        'environment': settings.APP_ENV,
    }


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    return request.app.state.quote_service.metrics()
