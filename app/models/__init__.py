from .flow import Flow, Environment

__all__ = ['Flow', 'Environment']
