"""测试用的模型能力与摘要器替身。"""


class FakeHandle:
    """脚本化的模型句柄：replies 中每一项是一轮回复的片段列表，片段可以是异常。"""

    def __init__(self, replies, quota=1000, usage_step=100, usage=0):
        self.replies = replies
        self.input_usage = usage
        self.input_quota = quota
        self.usage_step = usage_step
        self.destroyed = False
        self.prompts = []
        self.closed_streams = 0

    def prompt(self, text):
        return "".join(self._next_reply(text))

    def prompt_streaming(self, text):
        if self.destroyed:
            raise RuntimeError("destroyed")
        fragments = self._next_reply(text)
        return self._generate(fragments)

    def _next_reply(self, text):
        self.prompts.append(text)
        return self.replies.pop(0) if self.replies else ["ok"]

    def _generate(self, fragments):
        try:
            for f in fragments:
                if isinstance(f, BaseException):
                    raise f
                yield f
            self.input_usage += self.usage_step
        finally:
            self.closed_streams += 1

    def clone(self):
        return FakeHandle(self.replies, self.input_quota, self.usage_step, self.input_usage)

    def destroy(self):
        self.destroyed = True


class FakeCapability:
    name = "fake"

    def __init__(self, replies=None, availability="readily", quota=1000, usage_step=100):
        self.replies = replies if replies is not None else []
        self.state = availability
        self.quota = quota
        self.usage_step = usage_step
        self.handles = []
        self.created_options = []
        self.fail_create = None
        self.fail_params = None
        self.download_fractions = []

    def availability(self):
        if isinstance(self.state, BaseException):
            raise self.state
        return self.state

    def params(self):
        if self.fail_params is not None:
            raise self.fail_params
        return {"defaultTopK": 3, "maxTopK": 128, "defaultTemperature": 1.0, "maxTemperature": 2.0}

    def create(self, options, progress_callback=None):
        if self.fail_create is not None:
            raise self.fail_create
        if progress_callback is not None:
            for fraction in self.download_fractions:
                progress_callback(fraction)
        self.created_options.append(options)
        handle = FakeHandle(self.replies, self.quota, self.usage_step)
        self.handles.append(handle)
        return handle


class FakeSummarizer:
    def __init__(self, result="Greeting", available=True, error=None):
        self.result = result
        self.available = available
        self.error = error
        self.calls = []

    def is_available(self):
        return self.available

    def summarize(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result
