"""Agent 协议、单轮对话控制器与内置 Agent。"""
