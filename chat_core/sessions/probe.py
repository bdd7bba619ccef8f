"""模型能力探测。

CapabilityProbe 回答三个问题：能力是否存在、是否可以立即使用、默认参数是什么。
下载模型期间，它把能力层回调的完成比例转换为百分比，通过 download_progress 推送给订阅者。
"""

import logging
from typing import Callable, Optional

from chat_core.domain.exceptions import ApiUnavailable, BrowserUnsupported, ChatError
from chat_core.domain.models import ApiStatus, Availability, ModelParams
from chat_core.infrastructure.events.observable import Observable
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.base import ModelCapability
from chat_core.sessions.errors import UNSUPPORTED_MESSAGE


UNAVAILABLE_MESSAGE = (
    "The local language model is not available on this device. "
    "Please check that the model runtime is running and meets the hardware requirements."
)


class CapabilityProbe:
    def __init__(self, capability: Optional[ModelCapability]):
        self._capability = capability
        self.download_progress: Observable[float] = Observable(0.0, name="download_progress")
        self.status: Observable[ApiStatus] = Observable(ApiStatus.CHECKING, name="api_status")
        self.status_message = ""

    @property
    def capability(self) -> Optional[ModelCapability]:
        return self._capability

    def is_supported(self) -> bool:
        return self._capability is not None

    def require_capability(self) -> ModelCapability:
        if self._capability is None:
            raise BrowserUnsupported(UNSUPPORTED_MESSAGE)
        return self._capability

    def check_availability(self) -> Availability:
        capability = self.require_capability()
        try:
            availability = Availability(capability.availability())
        except Exception as exc:
            log_event(logging.ERROR, "Availability check failed", {}, error=str(exc))
            raise ApiUnavailable("Failed to check API availability", details=exc)
        log_event(logging.INFO, "Model availability", {}, availability=availability.value)
        return availability

    def get_model_params(self) -> ModelParams:
        capability = self.require_capability()
        try:
            raw = capability.params()
            return ModelParams(
                default_top_k=int(raw["defaultTopK"]),
                max_top_k=int(raw["maxTopK"]),
                default_temperature=float(raw["defaultTemperature"]),
                max_temperature=float(raw["maxTemperature"]),
            )
        except Exception as exc:
            log_event(logging.ERROR, "Failed to get model params", {}, error=str(exc))
            raise ApiUnavailable("Failed to get model parameters", details=exc)

    def reset_progress(self) -> None:
        self.download_progress.publish(0.0)

    def report_download_progress(self, fraction: float) -> None:
        """能力层的下载回调：0..1 的比例转为 0..100 的百分比。

        多层文件分别下载时比例可能回退，这里只推送不小于当前值的百分比。
        """

        percent = max(0.0, min(100.0, float(fraction) * 100))
        if percent < self.download_progress.value:
            return
        self.download_progress.publish(percent)

    def initialize(self, create_session: Callable[[], None]) -> ApiStatus:
        """启动检查：探测能力、必要时等待下载，并创建第一个会话。

        失败不会抛出，而是以 UNAVAILABLE / UNSUPPORTED 状态加 status_message 返回，
        调用方可以再次调用本方法重试。
        """

        self._set_status(ApiStatus.CHECKING, "")
        if not self.is_supported():
            return self._set_status(ApiStatus.UNSUPPORTED, UNSUPPORTED_MESSAGE)
        try:
            availability = self.check_availability()
            if availability is Availability.UNAVAILABLE:
                return self._set_status(ApiStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE)
            if availability is Availability.NEEDS_DOWNLOAD:
                self._set_status(ApiStatus.DOWNLOADING, "")
            create_session()
        except ChatError as exc:
            return self._set_status(ApiStatus.UNAVAILABLE, exc.message)
        except Exception as exc:
            message = str(exc) or "Failed to initialize the local model. Please try again."
            return self._set_status(ApiStatus.UNAVAILABLE, message)
        return self._set_status(ApiStatus.READY, "")

    def _set_status(self, status: ApiStatus, message: str) -> ApiStatus:
        self.status_message = message
        self.status.publish(status)
        log_event(logging.INFO, "API status changed", {}, status=status.value, detail=message)
        return status
