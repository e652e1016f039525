"""
Storefront — エラー定義

ドメイン層はこれらの例外を送出し、HTTP 層(main.py)が
status_code / code を使ってレスポンスに変換する。
どれもリクエスト単位で回復可能で、プロセスを落とすものではない。
"""


class StorefrontError(Exception):
    """全ドメインエラーの基底クラス"""

    status_code = 400
    code = "STOREFRONT_ERROR"


class EmptyCart(StorefrontError):
    code = "EMPTY_CART"

    def __init__(self) -> None:
        super().__init__("No items in order")


class ProductNotFound(StorefrontError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CatalogProductNotFound(ProductNotFound):
    """商品詳細 API で見つからない場合。カート検証の ProductNotFound は 400 のまま。"""

    status_code = 404


class InsufficientStock(StorefrontError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id}: "
            f"requested={requested}, available={available}"
        )


class OrderNotFound(StorefrontError):
    status_code = 404
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class NotCancellable(StorefrontError):
    code = "NOT_CANCELLABLE"

    def __init__(self, order_id: str, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order cannot be cancelled at this stage ({status})")


class InvalidStatusTransition(StorefrontError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class PersistenceConflict(StorefrontError):
    """注文番号の衝突、または同時更新によるバージョン競合"""

    status_code = 409
    code = "PERSISTENCE_CONFLICT"
