"""领域层模型与协议。

包含：
- models: Message / Product / CartEntry / ConversationState 等数据模型，以及 Provider 对话结构。
- stores: MessageStore / ProductCatalog / CartStore 协议。
- exceptions: 业务异常与助手错误分类。
"""
