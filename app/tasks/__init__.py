from app.tasks.access_tasks import expire_accounts_sweep

__all__ = [
    'expire_accounts_sweep',
]
