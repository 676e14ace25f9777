"""领域层模型与协议。

包含：
- models: ChatMessage / ChatRequest / ChatResult 以及 DMResponse 等模型。
- conversation: 会话、消息、上下文与 ConversationStore 抽象。
- exceptions: 业务异常与 ServiceError 分类。
"""
