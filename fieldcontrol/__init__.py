from .client import ApiClient, ApiError, TransportError, ensure_success
from .config import Settings
from .interceptors import Interceptor, InterceptorChain, Stage, default_chain
from .uploads import UploadError, UploadStage, VerificationError

__all__ = [
    'ApiClient', 'ApiError', 'TransportError', 'ensure_success', 'Settings',
    'Interceptor', 'InterceptorChain', 'Stage', 'default_chain',
    'UploadError', 'UploadStage', 'VerificationError',
]
