from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.common.error_handlers import register_error_handlers
from app.core.config import settings
from app.api.v1 import voucher, budget, earmark, category, cash_advance

app = FastAPI(title="BudgetO Ledger", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Register API routers
app.include_router(voucher.router, prefix="/api/v1/vouchers", tags=["vouchers"])
app.include_router(budget.router, prefix="/api/v1/budgets", tags=["budgets"])
app.include_router(earmark.router, prefix="/api/v1/bindings", tags=["bindings"])
app.include_router(
    category.router, prefix="/api/v1/categories", tags=["categories"])
app.include_router(
    cash_advance.router, prefix="/api/v1/cash-advances", tags=["cash advances"])


@app.get("/")
def read_root():
    return {"message": "Welcome to the BudgetO Ledger APIs!"}
