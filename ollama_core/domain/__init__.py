"""领域层模型与异常。

包含：
- models: 请求/响应 dataclass。
- codec: 模型与 JSON 之间的转换。
- exceptions: 业务异常类型定义。
"""
