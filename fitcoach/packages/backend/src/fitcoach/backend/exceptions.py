"""Backend 异常体系

所有托管平台 / 推送中继调用失败都包装为 BackendError 子类。
"""


class BackendError(Exception):
    """Backend 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class BackendUnreachableError(BackendError):
    """托管平台不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, url: str, original_error: Exception) -> None:
        """
        Args:
            url: 尝试访问的地址
            original_error: 原始异常
        """
        super().__init__(
            f"托管平台不可达: {url} -- {original_error}",
            recoverable=True,
        )
        self.url = url
        self.original_error = original_error


class QueryError(BackendError):
    """数据 API 返回错误状态码"""

    def __init__(self, status_code: int, message: str, code: str = "") -> None:
        super().__init__(
            f"数据 API 错误 {status_code}: {message}",
            recoverable=status_code >= 500,
        )
        self.status_code = status_code
        self.code = code


class AuthError(BackendError):
    """认证失败（凭据错误、refresh_token 失效等）

    不可通过重试恢复，需要重新登录。
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message, recoverable=False)
        self.status_code = status_code


class RealtimeError(BackendError):
    """实时通道错误（连接断开、phx_join 被拒绝、回复超时）"""


class PushDeliveryError(BackendError):
    """推送中继投递失败

    推送失败不影响消息发送，调用方记录日志后继续。
    """
