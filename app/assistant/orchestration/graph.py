from langgraph.graph import END, StateGraph

from app.assistant.nodes.execute_node import ExecuteNode
from app.assistant.nodes.failure_node import ExecutionFailureNode
from app.assistant.nodes.plan_node import PlanNode
from app.assistant.nodes.synthesize_node import SynthesizeNode
from app.assistant.services.planner_service import PlannerService
from app.assistant.services.synthesis_service import SynthesisService
from app.assistant.state import AgentState
from app.services.query_service import QueryService


def create_graph(planner: PlannerService, query_service: QueryService, synthesizer: SynthesisService):
    plan = PlanNode(planner)
    execute = ExecuteNode(query_service)
    synthesize = SynthesizeNode(synthesizer)
    report_failure = ExecutionFailureNode()

    graph = StateGraph(AgentState)
    graph.add_node("planner", plan.run)
    graph.add_node("executor", execute.run)
    graph.add_node("synthesizer", synthesize.run)
    graph.add_node("report_failure", report_failure.run)

    graph.set_entry_point("planner")

    graph.add_conditional_edges(
        "planner",
        lambda state: "executor" if state.get("sql_queries") else END,
        {"executor": "executor", END: END},
    )
    graph.add_conditional_edges(
        "executor",
        lambda state: "report_failure" if state.get("failure") == "execution" else "synthesizer",
        {"report_failure": "report_failure", "synthesizer": "synthesizer"},
    )

    graph.add_edge("synthesizer", END)
    graph.add_edge("report_failure", END)

    return graph.compile()
