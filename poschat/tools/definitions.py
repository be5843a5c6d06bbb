"""Tool catalog shared by the prompt layer, the extractor and the provider.

Parameter names are defined once here; the provider reads arguments with the
same constants so that prompt instructions and execution code cannot drift.
"""
from typing import Dict, List

from ..schemas.tool_models import ToolDefinition

ADD_ITEM = "add_item_to_transaction"
VOID_LINE_ITEM = "void_line_item"
UPDATE_LINE_ITEM_QUANTITY = "update_line_item_quantity"
SEARCH_PRODUCTS = "search_products"
GET_PRODUCT_INFO = "get_product_info"
GET_POPULAR_ITEMS = "get_popular_items"
CALCULATE_TRANSACTION_TOTAL = "calculate_transaction_total"
GET_TRANSACTION = "get_transaction"
VERIFY_ORDER = "verify_order"
PROCESS_PAYMENT = "process_payment"
LOAD_MENU_CONTEXT = "load_menu_context"
LOAD_PAYMENT_METHODS_CONTEXT = "load_payment_methods_context"

MUTATING_TOOLS = frozenset({ADD_ITEM, VOID_LINE_ITEM, UPDATE_LINE_ITEM_QUANTITY, PROCESS_PAYMENT})

ADD_ITEM_CONTEXTS = ["initial_order", "clarification_response", "follow_up_order"]


def _params(properties: Dict[str, dict], required: List[str] = None) -> dict:
    return {"type": "object", "properties": properties, "required": required or []}


TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name=ADD_ITEM,
        description="Add an item to the current order. Searches the menu and either adds the match or returns options to clarify.",
        parameters=_params({
            "item_description": {"type": "string", "description": "What the customer asked for, e.g. 'kopi c' or 'kaya toast'"},
            "quantity": {"type": "integer", "minimum": 1, "default": 1},
            "preparation_notes": {"type": "string", "default": "", "description": "Preparation requests such as 'less sugar'"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.3,
                           "description": "How sure you are the description names one specific product"},
            "context": {"type": "string", "enum": ADD_ITEM_CONTEXTS, "default": "initial_order"},
        }, ["item_description"]),
    ),
    ToolDefinition(
        name=VOID_LINE_ITEM,
        description="Remove a line from the current order by its line number.",
        parameters=_params({
            "line_number": {"type": "integer", "minimum": 1},
            "reason": {"type": "string", "default": "customer requested"},
        }, ["line_number"]),
    ),
    ToolDefinition(
        name=UPDATE_LINE_ITEM_QUANTITY,
        description="Change the quantity of an existing line.",
        parameters=_params({
            "line_number": {"type": "integer", "minimum": 1},
            "new_quantity": {"type": "integer", "minimum": 1},
        }, ["line_number", "new_quantity"]),
    ),
    ToolDefinition(
        name=SEARCH_PRODUCTS,
        description="Search the menu by name, category or description.",
        parameters=_params({
            "search_term": {"type": "string"},
            "max_results": {"type": "integer", "minimum": 1, "maximum": 50, "default": 10},
        }, ["search_term"]),
    ),
    ToolDefinition(
        name=GET_PRODUCT_INFO,
        description="Get price and details for one product by SKU or exact name.",
        parameters=_params({"product_identifier": {"type": "string"}}, ["product_identifier"]),
    ),
    ToolDefinition(
        name=GET_POPULAR_ITEMS,
        description="List the best-selling items.",
        parameters=_params({"count": {"type": "integer", "minimum": 1, "maximum": 20, "default": 5}}),
    ),
    ToolDefinition(
        name=CALCULATE_TRANSACTION_TOTAL,
        description="Report the current order total.",
        parameters=_params({}),
    ),
    ToolDefinition(
        name=GET_TRANSACTION,
        description="Show every line of the current order with prices.",
        parameters=_params({}),
    ),
    ToolDefinition(
        name=VERIFY_ORDER,
        description="Read back the order so the customer can confirm it before paying.",
        parameters=_params({"include_translations": {"type": "boolean", "default": False}}),
    ),
    ToolDefinition(
        name=PROCESS_PAYMENT,
        description="Take payment for the current order.",
        parameters=_params({
            "payment_method": {"type": "string", "default": "cash"},
            "amount": {"type": "number", "minimum": 0, "description": "Amount tendered; defaults to the order total"},
        }),
    ),
    ToolDefinition(
        name=LOAD_MENU_CONTEXT,
        description="Load the full menu grouped by category.",
        parameters=_params({"include_categories": {"type": "boolean", "default": True}}),
    ),
    ToolDefinition(
        name=LOAD_PAYMENT_METHODS_CONTEXT,
        description="Load the payment methods this store accepts.",
        parameters=_params({"include_details": {"type": "boolean", "default": False}}),
    ),
]


def get_tool_definitions() -> List[ToolDefinition]:
    return list(TOOL_DEFINITIONS)

