"""
MCP Interface Layer using fastmcp, exposing the retrieval tools to the voice agent.
"""
from typing import Any, Dict

from fastmcp import FastMCP

from agrimem.services.tool_dispatcher import (FORECAST_TOOL, MARKET_TREND_TOOL, RECOMMENDATION_TOOL, SCHEME_SEARCH_TOOL,
                                              ToolDispatcher)
from agrimem.utils.config import config
from agrimem.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Agri Knowledge')
dispatcher = ToolDispatcher()


@mcp.tool(name=FORECAST_TOOL)
def get_weather_forecast(district: str, days: int = 7) -> Dict[str, Any]:
    """Get the day-by-day weather forecast for a district.

    Args:
        district: District name, e.g. Pune
        days: Number of days (default: 7)

    Returns:
        Forecast result, or a "no forecast available" outcome
    """
    return dispatcher.dispatch(FORECAST_TOOL, {'district': district, 'days': days})


@mcp.tool(name=RECOMMENDATION_TOOL)
def get_crop_recommendation(district: str, season: str, soil_type: str = 'medium', top_k: int = 5) -> Dict[str, Any]:
    """Recommend crops for a district and season, ranked by weather risk and soil fit.

    Args:
        district: District name
        season: kharif, rabi or zaid
        soil_type: Soil type of the farm (default: medium)
        top_k: Maximum number of crops (default: 5)

    Returns:
        Ranked crop recommendations, or a "no match" outcome
    """
    return dispatcher.dispatch(RECOMMENDATION_TOOL, {
        'district': district,
        'season': season,
        'soil_type': soil_type,
        'top_k': top_k
    })


@mcp.tool(name=MARKET_TREND_TOOL)
def get_market_price_trend(crop: str, market_area: str = 'all') -> Dict[str, Any]:
    """Get the recent price trend and moving average for a crop.

    Args:
        crop: Crop name, local names such as gehun or pyaz are understood
        market_area: Market area (default: all)

    Returns:
        Trend direction, percentage change and moving average
    """
    return dispatcher.dispatch(MARKET_TREND_TOOL, {'crop': crop, 'market_area': market_area})


@mcp.tool(name=SCHEME_SEARCH_TOOL)
def search_government_schemes(query: str = '',
                              farmer_type: str = 'all',
                              crop_type: str = 'all',
                              state: str = 'all',
                              top_k: int = 5) -> Dict[str, Any]:
    """Search government schemes matching a farmer's profile.

    Args:
        query: What the farmer is looking for, e.g. crop insurance
        farmer_type: small, marginal, tenant... (default: all)
        crop_type: Crop grown (default: all)
        state: State name (default: all)
        top_k: Maximum number of schemes (default: 5)

    Returns:
        Matching schemes with a short summary each
    """
    return dispatcher.dispatch(SCHEME_SEARCH_TOOL, {
        'query': query,
        'farmer_type': farmer_type,
        'crop_type': crop_type,
        'state': state,
        'top_k': top_k
    })


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
