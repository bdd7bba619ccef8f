"""Ollama 本地模型适配器。

本模块负责：

1. 通过 /api/tags 判断配置的模型是否已安装（readily / after-download / no）。
2. 通过 /api/show 读取模型默认采样参数，缺失时回退到配置值。
3. 模型未安装时通过 /api/pull 拉取，并把下载进度回调给上层。
4. OllamaSession 维护对话历史，调用 /api/chat（流式/非流式），
   并用 prompt_eval_count + eval_count 更新 input_usage。

换句话说，这里是"Ollama HTTP JSON ⇄ ModelCapability/ModelSessionHandle 协议"的转换层，
接入其他本地运行时可以参考此文件实现对应的适配器。
"""

import copy
import json
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, ValidationError
from chat_core.providers.base import AvailabilityValue, ProgressCallback, SessionOptions


def _error_text(resp: httpx.Response) -> str:
    """Ollama 的错误体通常是 {"error": "..."}，解析失败时返回原文。"""

    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return resp.text


def _iter_json_lines(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """逐行解析 NDJSON 流，遇到 error 字段时抛出 ApiError。"""

    for line in lines:
        if not line or not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if data.get("error"):
            raise ApiError(code="API_ERROR", message=str(data["error"]))
        yield data


class OllamaSession:
    """一个 Ollama 对话上下文。

    Ollama 的 /api/chat 本身是无状态的，这里在本地保存完整历史，
    只有成功结束的一轮对话才会写入历史；中途失败或被放弃的流不会污染上下文。
    """

    def __init__(
        self,
        settings,
        model: str,
        options: SessionOptions,
        history: Optional[List[Dict[str, str]]] = None,
        input_usage: int = 0,
    ):
        self._settings = settings
        self._model = model
        self._options = options
        self._history = history if history is not None else self._seed_history(options)
        self._destroyed = False
        self.input_usage = input_usage
        self.input_quota = int(settings.context_window)

    @property
    def history(self) -> List[Dict[str, str]]:
        return list(self._history)

    def prompt(self, text: str) -> str:
        """执行一次非流式调用，返回完整回复。"""

        self._ensure_usable()
        payload = self._build_payload(text, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(f"{self._settings.ollama_base_url}/api/chat", json=payload)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=_error_text(resp), http_status=resp.status_code)
        data = resp.json()
        if data.get("error"):
            raise ApiError(code="API_ERROR", message=str(data["error"]))
        reply = (data.get("message") or {}).get("content") or ""
        self._record_usage(data)
        self._commit_exchange(text, reply)
        return reply

    def prompt_streaming(self, text: str) -> Iterator[str]:
        """执行一次流式调用，逐个 yield 文本片段。

        关闭生成器（close()）会退出 httpx 的上下文管理器并释放底层连接。
        """

        self._ensure_usable()
        payload = self._build_payload(text, stream=True)
        parts: List[str] = []
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self._settings.ollama_base_url}/api/chat",
                    json=payload,
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=_error_text(resp), http_status=resp.status_code)
                    for data in _iter_json_lines(resp.iter_lines()):
                        piece = (data.get("message") or {}).get("content") or ""
                        if piece:
                            parts.append(piece)
                            yield piece
                        if data.get("done"):
                            self._record_usage(data)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._commit_exchange(text, "".join(parts))

    def clone(self) -> "OllamaSession":
        self._ensure_usable()
        return OllamaSession(
            self._settings,
            self._model,
            self._options,
            history=copy.deepcopy(self._history),
            input_usage=self.input_usage,
        )

    def destroy(self) -> None:
        self._history = []
        self._destroyed = True

    def _ensure_usable(self) -> None:
        if self._destroyed:
            raise ValidationError(code="SESSION_DESTROYED", message="Model session has been destroyed")
        if self.input_quota and self.input_usage >= self.input_quota:
            raise ApiError(code="CONTEXT_EXCEEDED", message="Context window quota exceeded")

    def _build_payload(self, text: str, stream: bool) -> Dict[str, Any]:
        options: Dict[str, Any] = {"num_ctx": self.input_quota}
        if self._options.top_k is not None:
            options["top_k"] = self._options.top_k
        if self._options.temperature is not None:
            options["temperature"] = self._options.temperature
        return {
            "model": self._model,
            "messages": self._history + [{"role": "user", "content": text}],
            "stream": stream,
            "options": options,
        }

    def _record_usage(self, data: Dict[str, Any]) -> None:
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        if prompt_tokens or completion_tokens:
            self.input_usage = prompt_tokens + completion_tokens

    def _commit_exchange(self, text: str, reply: str) -> None:
        self._history.append({"role": "user", "content": text})
        self._history.append({"role": "assistant", "content": reply})

    @staticmethod
    def _seed_history(options: SessionOptions) -> List[Dict[str, str]]:
        history: List[Dict[str, str]] = []
        if options.system_prompt:
            history.append({"role": "system", "content": options.system_prompt})
        for p in options.initial_prompts:
            history.append({"role": p.role, "content": p.content})
        return history


class OllamaCapability:
    """Ollama 模型能力实现。"""

    name = "ollama"

    def __init__(self, settings):
        # Settings 里包含 base_url、模型名、超时、上下文窗口等配置
        self._settings = settings

    @property
    def model(self) -> str:
        return self._settings.ollama_model

    def availability(self) -> AvailabilityValue:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(f"{self._settings.ollama_base_url}/api/tags")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            return "no"
        installed = set()
        for item in resp.json().get("models") or []:
            installed.add(item.get("name") or "")
            installed.add(item.get("model") or "")
        return "readily" if self._is_installed(installed) else "after-download"

    def params(self) -> dict:
        """读取模型默认采样参数。

        模型尚未下载时 /api/show 返回 404，此时直接使用配置中的默认值。
        """

        defaults = {
            "defaultTopK": self._settings.default_top_k,
            "maxTopK": self._settings.max_top_k,
            "defaultTemperature": self._settings.default_temperature,
            "maxTemperature": self._settings.max_temperature,
        }
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(f"{self._settings.ollama_base_url}/api/show", json={"model": self.model})
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 404:
            return defaults
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=_error_text(resp), http_status=resp.status_code)
        declared = self._parse_parameters(resp.json().get("parameters") or "")
        if "top_k" in declared:
            defaults["defaultTopK"] = int(float(declared["top_k"]))
        if "temperature" in declared:
            defaults["defaultTemperature"] = float(declared["temperature"])
        return defaults

    def create(
        self,
        options: SessionOptions,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> OllamaSession:
        state = self.availability()
        if state == "no":
            raise ApiError(code="API_ERROR", message="Local model server reports the model as unavailable")
        if state == "after-download":
            self._pull(progress_callback)
        return OllamaSession(self._settings, self.model, options)

    def _pull(self, progress_callback: Optional[ProgressCallback]) -> None:
        """拉取模型，把 completed/total 转成 0..1 的进度回调。"""

        # 下载可能持续很久，只限制连接超时
        timeout = httpx.Timeout(self._settings.http_timeout, read=None)
        try:
            with httpx.Client(timeout=timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self._settings.ollama_base_url}/api/pull",
                    json={"model": self.model, "stream": True},
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=_error_text(resp), http_status=resp.status_code)
                    for data in _iter_json_lines(resp.iter_lines()):
                        if progress_callback is None:
                            continue
                        total = data.get("total")
                        completed = data.get("completed")
                        if total and completed is not None:
                            progress_callback(min(1.0, completed / total))
                        if data.get("status") == "success":
                            progress_callback(1.0)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def _is_installed(self, installed: set) -> bool:
        wanted = self.model
        if wanted in installed:
            return True
        # "llama3.2" 与 "llama3.2:latest" 视为同一模型
        return ":" not in wanted and f"{wanted}:latest" in installed

    @staticmethod
    def _parse_parameters(raw: str) -> Dict[str, str]:
        """解析 /api/show 返回的 Modelfile 参数文本（每行 "key value"）。"""

        parsed: Dict[str, str] = {}
        for line in raw.splitlines():
            parts = line.split(None, 1)
            if len(parts) == 2:
                parsed[parts[0]] = parts[1].strip().strip('"')
        return parsed
