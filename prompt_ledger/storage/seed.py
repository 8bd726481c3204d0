"""
Example templates written into the `examples` category on init.
"""

from .templates import TemplateStore

EXAMPLES_CATEGORY = "examples"

EXAMPLE_TEMPLATES = {
    "code-review": """# Code Review Prompt

## Task
Review the following code for:
- Code quality and best practices
- Security vulnerabilities
- Performance issues
- Maintainability

## Input
```{{language}}
{{code}}
```

## Output Format
Provide structured feedback with specific suggestions for improvement.""",
    "bug-fix": """# Bug Fix Prompt

## Task
Analyze the following code and identify potential bugs:

## Code
```{{language}}
{{code}}
```

## Error/Issue
{{error_description}}

## Expected Output
1. Root cause analysis
2. Proposed fix with explanation
3. Prevention strategies""",
    "feature-request": """# Feature Implementation Prompt

## Feature Description
{{feature_description}}

## Requirements
{{requirements}}

## Existing Code Context
```{{language}}
{{existing_code}}
```

## Output
Provide implementation plan and code for the requested feature.""",
}


def seed_examples(store: TemplateStore) -> int:
    """Write the example templates, overwriting any existing copies.

    Returns:
        Number of templates written
    """
    for name, content in EXAMPLE_TEMPLATES.items():
        store.put(EXAMPLES_CATEGORY, name, content)
    return len(EXAMPLE_TEMPLATES)
