"""Tool execution against the transaction kernel.

Every tool returns a string the oracle can read back. Business outcomes
(no such product, several candidates, kernel refused the change) come back as
marker strings such as ``PRODUCT_NOT_FOUND:`` or ``ERROR:``. Infrastructure
failures (kernel unreachable, missing configuration) raise, so the execution
stage can record them as failed calls.
"""
from typing import Any, Callable, Dict, List, Optional

from ..data.catalog import ProductCatalog, ProductInfo
from ..kernel.client import KernelClient, KernelRequestError
from ..schemas.kernel_models import KernelTransaction, KernelTransactionState
from ..schemas.receipt_models import StoreInfo
from ..schemas.tool_models import ToolDefinition, ToolInvocation
from ..utils.formatting import format_currency
from ..utils.logger import get_logger
from . import definitions as tools
from .context import KernelContext

logger = get_logger("tools.provider")

SPECIFICITY_INDICATORS = [
    "large", "small", "medium", "hot", "iced", "decaf", "regular",
    "kosong", "siew dai", "gao", "poh", "peng",
]

STORE_PAYMENT_METHODS = {
    "kopitiam": ["Cash", "PayNow", "NETS", "Credit Card"],
}
DEFAULT_PAYMENT_METHODS = ["Cash", "Card"]

CARD_ALIASES = {"card", "credit", "debit", "credit card", "debit card", "visa", "mastercard"}


def is_exact_match(term: str, product: ProductInfo) -> bool:
    term = (term or "").strip().lower()
    return term == product.name.strip().lower() or term == product.sku.lower()


def is_specific_match(term: str, product: ProductInfo) -> bool:
    """True when the description is an exact hit or carries a qualifier that narrows it to this product."""
    if is_exact_match(term, product):
        return True
    term = term.strip().lower()
    if not any(indicator in term for indicator in SPECIFICITY_INDICATORS):
        return False
    base = term.replace(" kosong", "").replace(" peng", "").strip()
    return bool(base) and base in product.name.lower()


class ToolExecutionProvider:
    """Executes catalog tools for one conversation against the kernel."""

    def __init__(
        self,
        kernel: KernelClient,
        catalog: ProductCatalog,
        context: KernelContext,
        store: StoreInfo,
        auto_add_confidence: float,
        high_confidence: float,
        default_confidence: float = 0.3,
        payment_methods: List[str] = None,
    ):
        self.kernel = kernel
        self.catalog = catalog
        self.context = context
        self.store = store
        self.auto_add_confidence = auto_add_confidence
        self.high_confidence = high_confidence
        self.default_confidence = default_confidence
        self.payment_methods = payment_methods or STORE_PAYMENT_METHODS.get(store.store_type, DEFAULT_PAYMENT_METHODS)
        # Kernel state returned by the most recent accepted tender
        self.last_payment: Optional[KernelTransaction] = None
        self._tools = {tool.name: tool for tool in tools.get_tool_definitions()}
        self._handlers: Dict[str, Callable[[Dict[str, Any]], str]] = {
            tools.ADD_ITEM: self._add_item,
            tools.VOID_LINE_ITEM: self._void_line_item,
            tools.UPDATE_LINE_ITEM_QUANTITY: self._update_line_item_quantity,
            tools.SEARCH_PRODUCTS: self._search_products,
            tools.GET_PRODUCT_INFO: self._get_product_info,
            tools.GET_POPULAR_ITEMS: self._get_popular_items,
            tools.CALCULATE_TRANSACTION_TOTAL: self._calculate_total,
            tools.GET_TRANSACTION: self._get_transaction,
            tools.VERIFY_ORDER: self._verify_order,
            tools.PROCESS_PAYMENT: self._process_payment,
            tools.LOAD_MENU_CONTEXT: self._load_menu_context,
            tools.LOAD_PAYMENT_METHODS_CONTEXT: self._load_payment_methods_context,
        }

    def get_available_tools(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def execute(self, invocation: ToolInvocation) -> str:
        """Run one tool.

        Args:
            invocation: Tool name and arguments

        Returns:
            Result text or a failure marker

        Raises:
            KernelUnavailableError: the kernel cannot be reached
            ConfigurationError: the store is missing required configuration
        """
        name = invocation.function_name
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"[TOOLS] unknown tool requested: {name}")
            return f"Unknown tool: {name}"

        problems = tool.validate_arguments(invocation.arguments)
        if problems:
            return f"ERROR: Invalid arguments for {name}: {'; '.join(problems)}"

        logger.info(f"[TOOLS] executing {name} {invocation.arguments}")
        try:
            return self._handlers[name](invocation.arguments)
        except KernelRequestError as e:
            logger.warning(f"[TOOLS] kernel rejected {name}: {e}")
            return f"ERROR: {e}"

    # Structured accessors used outside the oracle path

    def get_transaction_snapshot(self) -> Optional[KernelTransaction]:
        if not self.context.has_transaction:
            return None
        return self.kernel.get_transaction(self.context.session_id, self.context.transaction_id)

    def lookup_product_name(self, sku: str) -> Optional[str]:
        product = self.catalog.get_by_sku(sku)
        return product.name if product else None

    def reset_transaction(self) -> None:
        self.last_payment = None
        self.context.clear_transaction()

    def close(self) -> None:
        self.context.close(self.kernel)

    def _money(self, amount: float) -> str:
        return format_currency(amount, self.store.currency)

    # Ordering tools

    def _add_item(self, args: Dict[str, Any]) -> str:
        description = (args.get("item_description") or "").strip()
        quantity = args.get("quantity") or 1
        notes = (args.get("preparation_notes") or "").strip()
        confidence = args.get("confidence")
        if confidence is None:
            confidence = self.default_confidence
        context = args.get("context") or "initial_order"
        logger.info(f"[TOOLS] add '{description}' x{quantity} confidence={confidence} context={context}")

        if not description:
            return "PRODUCT_NOT_FOUND: Please specify what you'd like to order"

        results = self.catalog.search(description, 10)
        if not results:
            results = self._broader_search(description)
            if not results:
                return f"PRODUCT_NOT_FOUND: I don't recognize '{description}'. Could you try describing it differently?"

        exact = [p for p in results if is_exact_match(description, p)]
        specific = [p for p in results if is_specific_match(description, p)]
        best = (exact or specific or results)[0]

        if context == "clarification_response":
            chosen = best
        elif len(exact) == 1 and len(results) == 1:
            chosen = exact[0]
        elif len(exact) == 1 and confidence >= self.auto_add_confidence:
            chosen = exact[0]
        elif confidence >= self.high_confidence:
            chosen = best
        else:
            options = results[:3]
            listing = ", ".join(f"{p.name} ({self._money(p.price)})" for p in options)
            return f"DISAMBIGUATION_NEEDED: Found {len(options)} options for '{description}': {listing}"

        return self._add_product(chosen, quantity, notes)

    def _broader_search(self, description: str) -> List[ProductInfo]:
        first_word = description.split()[0]
        for term in (first_word, description.lower()):
            results = self.catalog.search(term, 10)
            if results:
                return results
        return []

    def _add_product(self, product: ProductInfo, quantity: int, notes: str) -> str:
        transaction_id = self.context.ensure_transaction(self.kernel)
        self.kernel.add_line_item(self.context.session_id, transaction_id, product.sku, quantity, product.price)
        prep = f" (prep: {notes})" if notes else ""
        return (
            f"ADDED: {product.name}{prep} x{quantity} @ {self._money(product.price)} each"
            f" = {self._money(product.price * quantity)}"
        )

    def _void_line_item(self, args: Dict[str, Any]) -> str:
        line_number = args["line_number"]
        reason = args.get("reason") or "customer requested"
        if not self.context.has_transaction:
            return "ERROR: There is no active order to change"
        self.kernel.void_line_item(self.context.session_id, self.context.transaction_id, line_number)
        return f"VOIDED: Line item {line_number} has been removed from the transaction. Reason: {reason}"

    def _update_line_item_quantity(self, args: Dict[str, Any]) -> str:
        line_number = args["line_number"]
        new_quantity = args["new_quantity"]
        if not self.context.has_transaction:
            return "ERROR: There is no active order to change"
        self.kernel.update_line_item_quantity(
            self.context.session_id, self.context.transaction_id, line_number, new_quantity
        )
        return f"UPDATED: Line item {line_number} quantity changed to {new_quantity}"

    # Catalog tools

    def _search_products(self, args: Dict[str, Any]) -> str:
        term = args["search_term"]
        results = self.catalog.search(term, args.get("max_results") or 10)
        if not results:
            return f"No products found matching '{term}'"
        lines = [f"Found {len(results)} products:"]
        lines += [f"• {p.name} - {self._money(p.price)} ({p.category})" for p in results]
        return "\n".join(lines)

    def _get_product_info(self, args: Dict[str, Any]) -> str:
        identifier = args["product_identifier"]
        product = self.catalog.find(identifier)
        if product is None:
            return f"PRODUCT_NOT_FOUND: No product matches '{identifier}'"
        return (
            f"Product: {product.name}\nSKU: {product.sku}\nPrice: {self._money(product.price)}\n"
            f"Category: {product.category}\nDescription: {product.description}"
        )

    def _get_popular_items(self, args: Dict[str, Any]) -> str:
        items = self.catalog.popular(args.get("count") or 5)
        if not items:
            return "ERROR: No products available"
        lines = [f"Top {len(items)} popular items:"]
        lines += [f"• {p.name} - {self._money(p.price)}" for p in items]
        return "\n".join(lines)

    def _load_menu_context(self, args: Dict[str, Any]) -> str:
        products = self.catalog.all_products()
        if not products:
            return "ERROR: Menu is empty"
        lines = [f"MENU CONTEXT for {self.store.name}:"]
        categories = self.catalog.categories()
        if args.get("include_categories", True):
            lines.append("")
            lines.append("CATEGORIES:")
            lines += [f"  • {category}" for category in categories]
        lines.append("")
        lines.append(f"FULL MENU ({len(products)} items):")
        for category in categories:
            lines.append("")
            lines.append(f"{category.upper()}:")
            lines += [f"  • {p.name} ({p.sku}) - {self._money(p.price)}" for p in products if p.category == category]
        return "\n".join(lines)

    def _load_payment_methods_context(self, args: Dict[str, Any]) -> str:
        lines = [f"PAYMENT METHODS accepted at {self.store.name}:"]
        lines += [f"• {method}" for method in self.payment_methods]
        if args.get("include_details"):
            lines.append(f"Currency: {self.store.currency}. Cash payments receive change; other methods charge the exact total.")
        return "\n".join(lines)

    # Transaction tools

    def _calculate_total(self, args: Dict[str, Any]) -> str:
        txn = self.get_transaction_snapshot()
        if txn is None or txn.is_empty:
            return f"Transaction is empty. Total: {self._money(0)}"
        return f"Current transaction total: {self._money(txn.total)} ({txn.state.value})"

    def _get_transaction(self, args: Dict[str, Any]) -> str:
        txn = self.get_transaction_snapshot()
        if txn is None:
            return "No active transaction"
        lines = [f"Transaction {txn.transaction_id[:8]} ({txn.state.value})"]
        for line in txn.line_items:
            lines.append(
                f"  Line {line.line_number}: {line.product_sku} x{line.quantity} @ "
                f"{self._money(line.unit_price)} = {self._money(line.extended_price)}"
            )
        lines.append(f"TOTAL: {self._money(txn.total)}")
        return "\n".join(lines)

    def _verify_order(self, args: Dict[str, Any]) -> str:
        txn = self.get_transaction_snapshot()
        if txn is None or txn.is_empty:
            return "ORDER_VERIFICATION: No items in the current order"
        lines = ["ORDER_VERIFICATION:"]
        for line in txn.line_items:
            name = self.lookup_product_name(line.product_sku) or line.product_sku
            lines.append(f"{line.line_number}. {line.quantity}x {name} - {self._money(line.extended_price)}")
        lines.append(f"Total: {self._money(txn.total)}")
        lines.append(f"Items: {sum(line.quantity for line in txn.line_items)}")
        return "\n".join(lines)

    def _is_supported_method(self, method: str) -> bool:
        accepted = {m.lower() for m in self.payment_methods}
        if method in accepted:
            return True
        return method in CARD_ALIASES and any("card" in m for m in accepted)

    def _process_payment(self, args: Dict[str, Any]) -> str:
        self.last_payment = None
        method = (args.get("payment_method") or args.get("method") or "cash").strip().lower()
        txn = self.get_transaction_snapshot()
        if txn is None or txn.is_empty:
            return "Cannot process payment: Transaction is empty"
        if txn.state == KernelTransactionState.completed:
            return f"PAYMENT_FAILED: Transaction is already paid ({self._money(txn.total)})"
        if not self._is_supported_method(method):
            accepted = ", ".join(self.payment_methods)
            return f"PAYMENT_FAILED: Payment method '{method}' is not accepted. Accepted methods: {accepted}"

        amount = args.get("amount")
        amount = txn.total if amount is None else float(amount)
        if amount < txn.total:
            return f"PAYMENT_FAILED: Tendered {self._money(amount)} is less than the total {self._money(txn.total)}"
        if method != "cash":
            # Non-cash tenders are charged the exact total
            amount = txn.total

        paid = self.kernel.process_payment(self.context.session_id, self.context.transaction_id, amount, method)
        self.last_payment = paid
        change = max(0.0, amount - paid.total)
        return (
            f"Payment processed: {self._money(amount)} via {method}\n"
            f"Total: {self._money(paid.total)}\n"
            f"Change due: {self._money(change)}\n"
            f"Transaction status: {paid.state.value}"
        )
