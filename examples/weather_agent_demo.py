"""Minimal demonstration of the weather agent."""

from ollama_core import ChatRequest, Message, OllamaClient
from ollama_core.agents.weather_agent import WeatherAgent

if __name__ == "__main__":
    with OllamaClient() as client:
        client.with_agent(WeatherAgent(client))
        request = ChatRequest(
            model="qwen2.5:7b",
            messages=[Message(role="user", content="北京天气如何？")],
        )
        reply = client.chat(request)
        print("User:", request.messages[0].content)
        print("Agent:", reply.message.content)

        request.messages.append(Message(role="user", content="讲个笑话"))
        print("Model: ", end="")
        with client.chat_stream(request) as stream:
            for record in stream:
                print(record.message.content, end="", flush=True)
        print()
