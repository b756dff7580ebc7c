"""
salesflow.workflow

Workflow execution engine (LangGraph).

Responsibilities:
- Compile stored trigger/condition/action/delay graphs into runnable graphs.
- Provide the typed run state, reducers and step nodes.
"""
