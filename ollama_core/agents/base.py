"""Agent 抽象接口。

Agent 是可以在不调用模型的情况下直接回答某类问题的插件，
例如把天气问题转交给天气接口。客户端按注册顺序逐个询问：

- name / description: Agent 名称与能力说明，用于日志和展示。
- can_handle(text): 是否能处理这条用户输入。
- execute(text): 执行并返回文本答案，失败时抛出异常。

实现者不需要继承任何基类，满足此协议即可。
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Agent(Protocol):
    """Agent 协议。"""

    name: str
    description: str

    def can_handle(self, text: str) -> bool:
        ...

    def execute(self, text: str) -> str:
        ...
