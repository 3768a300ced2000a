"""流式响应的按行解码。"""
