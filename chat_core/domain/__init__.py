"""领域层模型与协议。

包含：
- models: ChatMessage / ChatSession / ChatSessionMetadata 等数据模型。
- chat: ChatStore 存储抽象。
- exceptions: 业务异常与会话错误分类。
"""
