"""
Tool Dispatcher: the single entry point the conversational agent calls.

Routes (tool name, arguments) to a retrieval handler and always answers with a
well-formed, JSON-serializable dict; no exception escapes ``dispatch``.
"""

from typing import Any, Callable, Dict, Optional

from ..utils.logging_config import get_logger
from .retrieval_tools import InsufficientDataError, NoDataForLocationError, RetrievalTools

logger = get_logger(__name__)

FORECAST_TOOL = 'get_weather_forecast'
RECOMMENDATION_TOOL = 'get_crop_recommendation'
MARKET_TREND_TOOL = 'get_market_price_trend'
SCHEME_SEARCH_TOOL = 'search_government_schemes'

NO_DATA_MESSAGES = {
    NoDataForLocationError.error_kind: 'No forecast available for this location right now.',
    InsufficientDataError.error_kind: 'Not enough market price data to compute a trend yet.',
}


class UnknownToolError(Exception):
    """Raised for a tool name with no handler."""
    error_kind = 'UnknownTool'


class InvalidArgumentsError(Exception):
    """Raised when tool arguments are missing or of the wrong type."""
    error_kind = 'InvalidArguments'


def error_result(error_kind: str, message: str) -> Dict[str, Any]:
    return {'status': 'error', 'errorKind': error_kind, 'message': message}


def _text(arguments: Dict[str, Any], *names: str, default: Optional[str] = None) -> str:
    for name in names:
        value = arguments.get(name)
        if value is not None and str(value).strip():
            return str(value)
    if default is None:
        raise InvalidArgumentsError(f"Missing required argument '{names[0]}'")
    return default


def _int(arguments: Dict[str, Any], name: str, default: Optional[int], minimum: int = 1, maximum: int = 30) -> Optional[int]:
    value = arguments.get(name)
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentsError(f"Argument '{name}' must be an integer, got {value!r}")
    if not minimum <= number <= maximum:
        raise InvalidArgumentsError(f"Argument '{name}' must be between {minimum} and {maximum}")
    return number


class ToolDispatcher:
    """Maps tool names 1:1 to retrieval handlers."""

    def __init__(self, tools: Optional[RetrievalTools] = None):
        """
        Initialize the dispatcher.

        Args:
            tools: RetrievalTools instance, built from the global config if None
        """
        self.tools = tools or RetrievalTools()
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            FORECAST_TOOL: self._forecast,
            RECOMMENDATION_TOOL: self._recommendation,
            MARKET_TREND_TOOL: self._market_trend,
            SCHEME_SEARCH_TOOL: self._scheme_search,
        }
        logger.info(f'Initialized ToolDispatcher with tools: {", ".join(self.handlers)}')

    def dispatch(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a tool and convert every outcome into a structured result.

        Args:
            tool_name: Name of the tool requested by the agent
            arguments: Tool arguments

        Returns:
            Tool result dict (``status`` ok / no_match / no_data) or a structured
            error ``{'status': 'error', 'errorKind', 'message'}``
        """
        try:
            handler = self.handlers.get(tool_name)
            if handler is None:
                raise UnknownToolError(f'Unknown tool: {tool_name!r}')
            if arguments is None:
                arguments = {}
            if not isinstance(arguments, dict):
                raise InvalidArgumentsError('Tool arguments must be an object')

            result = handler(arguments)
            logger.debug(f'Tool {tool_name} returned status {result.get("status")}')
            return result

        except (NoDataForLocationError, InsufficientDataError) as e:
            logger.info(f'Tool {tool_name} found no data: {e}')
            return {'status': 'no_data', 'reason': e.error_kind, 'message': NO_DATA_MESSAGES[e.error_kind], 'detail': str(e)}
        except (UnknownToolError, InvalidArgumentsError) as e:
            logger.warning(f'Rejected tool call {tool_name}: {e}')
            return error_result(e.error_kind, str(e))
        except Exception as e:
            logger.error(f'Unexpected error in tool {tool_name}: {e}')
            return error_result('InternalError', f'Tool {tool_name} failed: {e}')

    def dispatch_request(self, request: Any) -> Dict[str, Any]:
        """
        Dispatch the wire form ``{"toolName": ..., "arguments": {...}}``.

        Args:
            request: Decoded request object

        Returns:
            Same as ``dispatch``
        """
        if not isinstance(request, dict) or not request.get('toolName'):
            return error_result(InvalidArgumentsError.error_kind, "Request must be an object with a 'toolName'")
        return self.dispatch(str(request['toolName']), request.get('arguments'))

    def _forecast(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.tools.forecast(_text(arguments, 'district', 'location'),
                                   _int(arguments, 'days', None, maximum=16))

    def _recommendation(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.tools.recommend_crops(_text(arguments, 'district', 'location'),
                                          _text(arguments, 'season'),
                                          _text(arguments, 'soil_type', default='medium'),
                                          _int(arguments, 'top_k', 5, maximum=20))

    def _market_trend(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.tools.market_price_trend(_text(arguments, 'crop', 'commodity'),
                                             _text(arguments, 'market_area', 'market', default='all'))

    def _scheme_search(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.tools.search_schemes(_text(arguments, 'query', default=''),
                                         _text(arguments, 'farmer_type', default='all'),
                                         _text(arguments, 'crop_type', 'crop', default='all'),
                                         _text(arguments, 'state', default='all'),
                                         _int(arguments, 'top_k', 5, maximum=20))
