FINAL_RESPONSE_TOOL_NAME = 'format_final_json_response'
OUTPUT_KEY = 'output'

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_BATCH_SIZE = 1
DEFAULT_DELAY_BETWEEN_BATCHES_MS = 0

MAX_ITERATIONS_STOP_MESSAGE = 'Agent stopped due to max iterations.'

# Keys of the agent working context that never reach the item output
INTERNAL_CONTEXT_KEYS = (
    'system_message',
    'formatting_instructions',
    'input',
    'chat_history',
    'agent_scratchpad',
)

# Langfuse
LANGFUSE_LOG_NAME = 'WatsonX-Langfuse-Agent'
LANGFUSE_LLM_LOG_NAME = 'WatsonX-Langfuse'
LANGFUSE_AGENT_USER_ID = 'n8n-watsonx-ai-agent'
LANGFUSE_LLM_USER_ID = 'n8n-watsonx-llm'
SAFE_HEADER_PREFIX = 'x-'
MISSING_LLM_OUTPUT = '[missing output]'
DEFAULT_LLM_NAME = 'watson-x'

DEFAULT_WORKFLOW_NAME = 'workflow'
CHAT_INPUT_KEY = 'chatInput'
