"""
Storefront Order Service — 起動スクリプト

    python -m storefront
    storefront-order-service   (pip install 後)

HOST / PORT 環境変数で待ち受けアドレスを変えられる。
"""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "storefront.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
